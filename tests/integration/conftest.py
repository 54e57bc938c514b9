"""Fixtures for the HTTP route tests: a real app around a SyncManager with a mocked Strava."""
import json
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from stravadash.api.main import create_app
from stravadash.notify import Notifier
from stravadash.strava.auth import TokenStore
from stravadash.strava.client import StravaClient
from stravadash.strava.sync_service import SyncManager


class StravaStub:
    """Token endpoint plus an athlete with stats and no activities."""

    def __init__(self, load_fixture):
        self.exchange = (200, load_fixture("strava_token_exchange.json"))
        self.stats = load_fixture("strava_athlete_stats.json")
        self.token_requests = []
        self.deauthorized = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/oauth/token":
            self.token_requests.append(dict(httpx.QueryParams(request.content.decode())))
            status, payload = self.exchange
            return httpx.Response(status, json=payload)
        if path == "/oauth/deauthorize":
            self.deauthorized.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"access_token": "access-abc"})
        if path.endswith("/stats"):
            return httpx.Response(200, json=self.stats)
        if path == "/api/v3/athlete/activities":
            return httpx.Response(200, json=[])
        return httpx.Response(404, json={"message": "Record Not Found", "errors": []})


@pytest.fixture
def strava_stub(load_fixture):
    return StravaStub(load_fixture)


@pytest.fixture
def manager(settings, strava_stub):
    return SyncManager(
        settings,
        token_store=TokenStore(settings.tokens_file),
        client=StravaClient(httpx.AsyncClient(transport=httpx.MockTransport(strava_stub))),
        notifier=Notifier(),
        scheduler=MagicMock(),
    )


@pytest.fixture
def authorised(settings):
    """Store a credential for client 12345 directly on disk."""
    settings.tokens_file.parent.mkdir(parents=True, exist_ok=True)
    settings.tokens_file.write_text(json.dumps({
        "12345": {"token": {
            "token_type": "Bearer",
            "access_token": "access-abc",
            "refresh_token": "refresh-abc",
            "expires_at": 2_000_000_000,
            "athlete_id": 987654,
        }}
    }))


@pytest.fixture(name="client")
def client_fixture(manager):
    app = create_app(manager)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def module_config():
    return {"identifier": "default", "client_id": "12345", "client_secret": "secret"}
