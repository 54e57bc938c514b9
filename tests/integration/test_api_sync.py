"""Integration tests for the /strava/sync routes."""
from unittest.mock import patch

from stravadash import notify
from stravadash.strava.sync_service import LEGACY_AUTH_WARNING


class TestReceiveConfig:
    def test_schedules_sync_job(self, client, manager, authorised, module_config):
        resp = client.post("/strava/sync/config", json=module_config)

        assert resp.status_code == 200
        assert resp.json() == {"identifier": "default", "authorised": True}
        kwargs = manager.scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == "sync:default"
        assert kwargs["seconds"] == 900

    def test_accepts_widget_option_names(self, client, manager, authorised, module_config):
        client.post(
            "/strava/sync/config",
            json={**module_config, "fetchInterval": 60000, "runningGoal": 1000, "mode": "Table"},
        )

        config = manager.get_config("default")
        assert config.fetch_interval == 60000
        assert config.goals["run"] == 1000
        assert config.mode == "table"

    def test_table_mode_schedules_rotation(self, client, manager, authorised, module_config):
        client.post(
            "/strava/sync/config",
            json={**module_config, "mode": "table", "auto_rotate": True, "updateInterval": 10000},
        )

        job_ids = [c.kwargs["id"] for c in manager.scheduler.add_job.call_args_list]
        assert job_ids == ["sync:default", "rotate:default"]

    def test_legacy_config_warns(self, client, module_config):
        client.post("/strava/sync/config", json={**module_config, "access_token": "legacy"})

        warning = client.get("/strava/sync/events/warning").json()
        assert warning == {"data": {"message": LEGACY_AUTH_WARNING}}

    def test_invalid_config_rejected(self, client):
        resp = client.post("/strava/sync/config", json={"units": "furlongs"})
        assert resp.status_code == 422


class TestTrigger:
    def test_unknown_module_404(self, client):
        resp = client.post("/strava/sync/trigger", json={"identifier": "nope"})
        assert resp.status_code == 404

    def test_starts_background_sync(self, client, authorised, module_config):
        client.post("/strava/sync/config", json=module_config)

        started = []

        async def fake_run_sync(orchestrator):
            started.append(orchestrator.identifier)

        with patch("stravadash.api.routes.sync.run_sync", fake_run_sync):
            resp = client.post("/strava/sync/trigger", json={})

        assert resp.status_code == 200
        assert resp.json() == {"message": "Sync started", "identifier": "default"}
        assert started == ["default"]

    def test_cycle_runs_end_to_end(self, client, authorised, module_config):
        client.post(
            "/strava/sync/config",
            json={**module_config, "segments": {"enabled": False}, "rankings": {"enabled": False}},
        )

        client.post("/strava/sync/trigger", json={"identifier": "default"})

        status = client.get("/strava/sync/status").json()["default"]
        assert status["status"] == "success"
        stats = client.get("/strava/sync/events/stats").json()
        assert stats["data"]["recent_ride_totals"]["pace"] == "36.00"
        events = client.get("/strava/sync/events").json()
        assert set(events) >= {notify.STATS, notify.ACTIVITIES, notify.SUMMARY}


class TestStatusAndEvents:
    def test_status_before_first_cycle(self, client, authorised, module_config):
        client.post("/strava/sync/config", json=module_config)

        status = client.get("/strava/sync/status").json()

        assert status["default"]["status"] == "never_run"

    def test_no_events_yet(self, client):
        assert client.get("/strava/sync/events").json() == {}
        assert client.get("/strava/sync/events/stats").status_code == 404

    def test_unknown_event_name(self, client):
        assert client.get("/strava/sync/events/segments").status_code == 404

    def test_period_rotation_publishes(self, client, manager, authorised, module_config):
        client.post("/strava/sync/config", json={**module_config, "mode": "table", "auto_rotate": True})

        manager.rotate("default")

        assert client.get("/strava/sync/events/period").json() == {"data": {"period": "ytd"}}
        summary = client.get("/strava/sync/events/summary").json()
        assert summary["data"]["period"] is not None
