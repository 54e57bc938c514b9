"""Tests for incremental activity pagination and id-deduplicated merge."""
from datetime import datetime, timezone

import pytest

from stravadash.strava.gateway import Fault, Ok, QuotaExceeded, TransportFailure
from stravadash.sync.activities import (
    EPOCH_START,
    ActivityFetcher,
    after_cursor,
    merge_activities,
)
from stravadash.sync.outcome import StopReason


def _page(start_id: int, count: int) -> list:
    return [
        {
            "id": start_id + i,
            "name": f"Run {start_id + i}",
            "type": "Run",
            "distance": 5000.0,
            "moving_time": 1500,
            "start_date_local": "2026-10-01T07:00:00Z",
            "map": {"summary_polyline": "xyz"},
        }
        for i in range(count)
    ]


class TestAfterCursor:
    def test_empty_cache_starts_at_2000(self):
        assert after_cursor([]) == EPOCH_START == 946684800

    def test_newest_local_start_plus_one_minute(self, make_activity):
        older = make_activity(1, start_date_local=datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc))
        newer = make_activity(2, start_date_local=datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc))
        expected = int(datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc).timestamp()) + 60
        assert after_cursor([newer, older]) == expected

    def test_east_of_utc_uses_utc_start(self, make_activity):
        # Berlin summer time: 08:30 local is 06:30 UTC
        activity = make_activity(
            1,
            start_date=datetime(2026, 10, 12, 6, 30, tzinfo=timezone.utc),
            start_date_local=datetime(2026, 10, 12, 8, 30, tzinfo=timezone.utc),
        )
        expected = int(datetime(2026, 10, 12, 6, 30, tzinfo=timezone.utc).timestamp()) + 60
        assert after_cursor([activity]) == expected

    def test_west_of_utc_uses_local_start(self, make_activity):
        # New York: 08:30 local is 12:30 UTC
        activity = make_activity(
            1,
            start_date=datetime(2026, 10, 12, 12, 30, tzinfo=timezone.utc),
            start_date_local=datetime(2026, 10, 12, 8, 30, tzinfo=timezone.utc),
        )
        expected = int(datetime(2026, 10, 12, 8, 30, tzinfo=timezone.utc).timestamp()) + 60
        assert after_cursor([activity]) == expected

    def test_newest_activity_wins_across_zones(self, make_activity):
        tokyo = make_activity(
            1,
            start_date=datetime(2026, 10, 12, 0, 0, tzinfo=timezone.utc),
            start_date_local=datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc),
        )
        london = make_activity(
            2,
            start_date=datetime(2026, 10, 12, 7, 0, tzinfo=timezone.utc),
            start_date_local=datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc),
        )
        expected = int(datetime(2026, 10, 12, 7, 0, tzinfo=timezone.utc).timestamp()) + 60
        assert after_cursor([tokyo, london]) == expected


class TestMerge:
    def test_duplicate_ids_not_added(self, make_activity):
        cached = [make_activity(1), make_activity(2)]
        added = merge_activities(cached, [make_activity(2), make_activity(3)])
        assert added == 1
        assert [a.id for a in cached] == [1, 2, 3]

    def test_cached_entry_keeps_enrichment(self, make_activity):
        cached = [make_activity(1, segments_checked=True)]
        merge_activities(cached, [make_activity(1)])
        assert cached[0].segments_checked is True

    def test_merge_is_idempotent(self, make_activity):
        cached = []
        batch = [make_activity(1), make_activity(2)]
        merge_activities(cached, batch)
        merge_activities(cached, batch)
        assert len(cached) == 2


class TestFetch:
    @pytest.mark.asyncio
    async def test_paginates_until_short_page(self, gateway):
        gateway.list_activities.side_effect = [
            Ok(_page(1, 200)),
            Ok(_page(201, 200)),
            Ok(_page(401, 73)),
        ]
        activities = []

        outcome = await ActivityFetcher(gateway).fetch(activities)

        assert gateway.list_activities.await_count == 3
        assert [c.kwargs["page"] for c in gateway.list_activities.await_args_list] == [1, 2, 3]
        assert len(activities) == 473
        assert outcome.changed == 473
        assert outcome.stopped_by is None

    @pytest.mark.asyncio
    async def test_empty_cache_requests_from_2000(self, gateway):
        gateway.list_activities.return_value = Ok([])
        await ActivityFetcher(gateway).fetch([])
        gateway.list_activities.assert_awaited_once_with(after=EPOCH_START, page=1, per_page=200)

    @pytest.mark.asyncio
    async def test_heavy_fields_stripped(self, gateway):
        gateway.list_activities.return_value = Ok(_page(1, 1))
        activities = []
        await ActivityFetcher(gateway).fetch(activities)
        assert "map" not in activities[0].model_dump()

    @pytest.mark.asyncio
    async def test_refetch_of_same_window_is_noop(self, gateway, make_activity):
        activities = [make_activity(1), make_activity(2)]
        gateway.list_activities.return_value = Ok(_page(1, 2))

        outcome = await ActivityFetcher(gateway).fetch(activities)

        assert outcome.changed == 0
        assert len(activities) == 2

    @pytest.mark.asyncio
    async def test_transport_failure_keeps_merged_pages(self, gateway):
        gateway.list_activities.side_effect = [Ok(_page(1, 200)), TransportFailure("reset")]
        activities = []

        outcome = await ActivityFetcher(gateway).fetch(activities)

        assert len(activities) == 200
        assert outcome.stopped_by is StopReason.TRANSPORT

    @pytest.mark.asyncio
    async def test_invalid_token_reports_auth(self, gateway):
        gateway.list_activities.return_value = Fault(code="invalid", field="access_token")
        outcome = await ActivityFetcher(gateway).fetch([])
        assert outcome.stopped_by is StopReason.AUTH

    @pytest.mark.asyncio
    async def test_quota_exceeded_stops(self, gateway):
        gateway.list_activities.return_value = QuotaExceeded()
        outcome = await ActivityFetcher(gateway).fetch([])
        assert outcome.quota_exhausted is True
        assert gateway.list_activities.await_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_usage_merges_then_stops(self, gateway, exhausted_usage):
        gateway.list_activities.side_effect = [Ok(_page(1, 200), exhausted_usage), Ok(_page(201, 5))]
        activities = []

        outcome = await ActivityFetcher(gateway).fetch(activities)

        assert len(activities) == 200
        assert gateway.list_activities.await_count == 1
        assert outcome.stopped_by is StopReason.QUOTA

    @pytest.mark.asyncio
    async def test_malformed_entries_skipped(self, gateway):
        gateway.list_activities.return_value = Ok(["oops", None, {"id": "x"}] + _page(1, 1))
        activities = []

        outcome = await ActivityFetcher(gateway).fetch(activities)

        assert [a.id for a in activities] == [1]
        assert outcome.stopped_by is None
