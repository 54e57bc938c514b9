"""
Rate-limit-aware gateway over StravaClient.

Every call returns exactly one tagged result and never raises for API or
network trouble:

    Ok(data, usage)             request succeeded
    Fault(code, field, ...)     Strava answered with an error document
    TransportFailure(cause)     connection error, timeout or 5xx
    QuotaExceeded(usage)        HTTP 429

`Ok.usage.exhausted` is the second backpressure signal: the request worked,
but the short- or long-term quota is used up, so callers must not start new
requests this cycle. Token refresh on an invalid-token Fault is the caller's
responsibility (see SyncOrchestrator).
"""
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from stravadash.strava.client import RateLimitUsage, StravaClient, StravaResponse

logger = logging.getLogger(__name__)


@dataclass
class Ok:
    data: Any
    usage: RateLimitUsage = dataclasses.field(default_factory=RateLimitUsage)

    @property
    def quota_exhausted(self) -> bool:
        return self.usage.exhausted


@dataclass
class Fault:
    code: Optional[str]
    field: Optional[str]
    message: str = ""
    status_code: Optional[int] = None
    usage: RateLimitUsage = dataclasses.field(default_factory=RateLimitUsage)

    @property
    def is_invalid_token(self) -> bool:
        return self.field == "access_token" and self.code == "invalid"

    @property
    def quota_exhausted(self) -> bool:
        return self.usage.exhausted


@dataclass
class TransportFailure:
    cause: str

    quota_exhausted = False


@dataclass
class QuotaExceeded:
    usage: RateLimitUsage = dataclasses.field(default_factory=RateLimitUsage)

    quota_exhausted = True


ApiResult = Union[Ok, Fault, TransportFailure, QuotaExceeded]


def classify(response: StravaResponse) -> ApiResult:
    """Map a raw StravaResponse onto the tagged result types."""
    payload = response.payload

    if response.status_code == 429:
        return QuotaExceeded(response.usage)

    if response.status_code >= 500:
        return TransportFailure(f"HTTP {response.status_code}")

    # Strava fault document: {"message": "...", "errors": [{"resource", "field", "code"}]}
    if isinstance(payload, dict) and "message" in payload and "errors" in payload:
        errors = payload.get("errors") or [{}]
        first = errors[0] if isinstance(errors[0], dict) else {}
        return Fault(
            code=first.get("code"),
            field=first.get("field"),
            message=str(payload.get("message", "")),
            status_code=response.status_code,
            usage=response.usage,
        )

    if response.status_code >= 400:
        return Fault(
            code=None,
            field=None,
            message=f"HTTP {response.status_code}",
            status_code=response.status_code,
            usage=response.usage,
        )

    if payload is None:
        return TransportFailure("Empty or undecodable response body")

    return Ok(payload, response.usage)


class StravaGateway:
    """
    Binds a StravaClient to an access token and classifies every response.

    The access token is a plain attribute so the orchestrator can swap it
    after a refresh without rebuilding stages.
    """

    def __init__(self, client: StravaClient, access_token: str):
        self.client = client
        self.access_token = access_token

    async def _call(self, name: str, fn, *args, **kwargs) -> ApiResult:
        try:
            response = await fn(self.access_token, *args, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("%s failed: %s", name, exc)
            return TransportFailure(str(exc) or exc.__class__.__name__)

        result = classify(response)
        if isinstance(result, Fault):
            logger.warning(
                "Strava API fault on %s: %s (field=%s, code=%s)",
                name, result.message, result.field, result.code,
            )
        elif isinstance(result, QuotaExceeded) or result.quota_exhausted:
            logger.warning("Strava API limit reached during %s", name)
        return result

    async def get_athlete_stats(self, athlete_id: int) -> ApiResult:
        return await self._call("get_athlete_stats", self.client.get_athlete_stats, athlete_id)

    async def list_activities(self, after: int, page: int, per_page: int) -> ApiResult:
        return await self._call(
            "list_activities",
            self.client.list_activities,
            after=after,
            page=page,
            per_page=per_page,
        )

    async def get_activity_detail(self, activity_id: int) -> ApiResult:
        return await self._call(
            "get_activity_detail", self.client.get_activity, activity_id, include_all_efforts=True
        )

    async def get_segment_leaderboard(self, segment_id: int) -> ApiResult:
        return await self._call(
            "get_segment_leaderboard",
            self.client.get_segment_leaderboard,
            segment_id,
            per_page=1,
            context_entries=0,
        )
