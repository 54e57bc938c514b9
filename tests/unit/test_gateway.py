"""Tests for response classification in the rate-limit-aware gateway."""
from unittest.mock import AsyncMock

import httpx
import pytest

from stravadash.strava.client import RateLimitUsage, StravaResponse
from stravadash.strava.gateway import (
    Fault,
    Ok,
    QuotaExceeded,
    StravaGateway,
    TransportFailure,
    classify,
)


def _response(status_code=200, payload=None, usage=None) -> StravaResponse:
    return StravaResponse(status_code, payload, usage or RateLimitUsage())


class TestClassify:
    def test_ok(self):
        result = classify(_response(200, [{"id": 1}]))
        assert isinstance(result, Ok)
        assert result.data == [{"id": 1}]
        assert result.quota_exhausted is False

    def test_ok_with_exhausted_usage_signals_backpressure(self, exhausted_usage):
        result = classify(_response(200, {"id": 1}, exhausted_usage))
        assert isinstance(result, Ok)
        assert result.quota_exhausted is True

    def test_invalid_token_fault(self, load_fixture):
        result = classify(_response(401, load_fixture("strava_fault_invalid_token.json")))
        assert isinstance(result, Fault)
        assert result.field == "access_token"
        assert result.code == "invalid"
        assert result.is_invalid_token is True

    def test_other_fault_is_not_auth(self):
        payload = {"message": "Record Not Found", "errors": [{"resource": "Activity", "field": "id", "code": "invalid"}]}
        result = classify(_response(404, payload))
        assert isinstance(result, Fault)
        assert result.is_invalid_token is False
        assert result.message == "Record Not Found"

    def test_fault_document_with_200_status(self):
        payload = {"message": "Authorization Error", "errors": [{"field": "access_token", "code": "invalid"}]}
        assert classify(_response(200, payload)).is_invalid_token is True

    def test_429_is_quota_exceeded(self):
        result = classify(_response(429, {"message": "Rate Limit Exceeded", "errors": []}))
        assert isinstance(result, QuotaExceeded)
        assert result.quota_exhausted is True

    def test_5xx_is_transport_failure(self):
        result = classify(_response(503, None))
        assert isinstance(result, TransportFailure)
        assert "503" in result.cause

    def test_bare_4xx_is_fault(self):
        result = classify(_response(403, None))
        assert isinstance(result, Fault)
        assert result.status_code == 403

    def test_undecodable_body_is_transport_failure(self):
        assert isinstance(classify(_response(200, None)), TransportFailure)


class TestGatewayCalls:
    @pytest.fixture
    def client(self):
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_passes_access_token(self, client):
        client.list_activities.return_value = _response(200, [])
        gateway = StravaGateway(client, "tok")

        result = await gateway.list_activities(after=1, page=1, per_page=200)

        assert isinstance(result, Ok)
        client.list_activities.assert_awaited_once_with("tok", after=1, page=1, per_page=200)

    @pytest.mark.asyncio
    async def test_swapped_token_used_for_next_call(self, client):
        client.get_athlete_stats.return_value = _response(200, {})
        gateway = StravaGateway(client, "old")
        gateway.access_token = "new"

        await gateway.get_athlete_stats(987654)

        client.get_athlete_stats.assert_awaited_once_with("new", 987654)

    @pytest.mark.asyncio
    async def test_detail_includes_all_efforts(self, client):
        client.get_activity.return_value = _response(200, {"id": 1})
        await StravaGateway(client, "tok").get_activity_detail(1)
        client.get_activity.assert_awaited_once_with("tok", 1, include_all_efforts=True)

    @pytest.mark.asyncio
    async def test_leaderboard_window(self, client):
        client.get_segment_leaderboard.return_value = _response(200, {"entries": []})
        await StravaGateway(client, "tok").get_segment_leaderboard(501)
        client.get_segment_leaderboard.assert_awaited_once_with("tok", 501, per_page=1, context_entries=0)

    @pytest.mark.asyncio
    async def test_network_error_becomes_transport_failure(self, client):
        client.get_activity.side_effect = httpx.ReadTimeout("timed out")
        result = await StravaGateway(client, "tok").get_activity_detail(1)
        assert isinstance(result, TransportFailure)
        assert "timed out" in result.cause
