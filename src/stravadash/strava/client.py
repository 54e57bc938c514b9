"""
Async client for the Strava v3 REST API and OAuth endpoints.

Thin layer over httpx: every data call returns a StravaResponse carrying the
HTTP status, the decoded JSON body and the rate-limit counters Strava reports
in its response headers. It does not interpret faults; that is the gateway's
job. Network failures surface as httpx.TransportError.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)

API_URL = "https://www.strava.com/api/v3"
OAUTH_URL = "https://www.strava.com/oauth"
DEFAULT_SCOPE = "read,activity:read,activity:read_all"

# Ceilings used when a response carries no X-RateLimit-Limit header
DEFAULT_SHORT_TERM_LIMIT = 600
DEFAULT_LONG_TERM_LIMIT = 30000


class StravaOAuthError(RuntimeError):
    """Raised when the OAuth token endpoint rejects an exchange or refresh."""


@dataclass
class RateLimitUsage:
    """Request counters for Strava's 15-minute and daily windows."""

    short_term_usage: int = 0
    long_term_usage: int = 0
    short_term_limit: int = DEFAULT_SHORT_TERM_LIMIT
    long_term_limit: int = DEFAULT_LONG_TERM_LIMIT

    @property
    def exhausted(self) -> bool:
        return (
            self.short_term_usage >= self.short_term_limit
            or self.long_term_usage >= self.long_term_limit
        )

    @classmethod
    def from_headers(
        cls,
        headers: httpx.Headers,
        short_term_limit: int = DEFAULT_SHORT_TERM_LIMIT,
        long_term_limit: int = DEFAULT_LONG_TERM_LIMIT,
    ) -> "RateLimitUsage":
        """
        Parse `X-RateLimit-Usage: "15,1200"` / `X-RateLimit-Limit: "600,30000"`.

        Missing or garbled headers leave the counters at zero and the limits
        at the supplied defaults.
        """
        usage = _parse_pair(headers.get("X-RateLimit-Usage"))
        limit = _parse_pair(headers.get("X-RateLimit-Limit"))
        return cls(
            short_term_usage=usage[0] if usage else 0,
            long_term_usage=usage[1] if usage else 0,
            short_term_limit=limit[0] if limit else short_term_limit,
            long_term_limit=limit[1] if limit else long_term_limit,
        )


def _parse_pair(value: Optional[str]) -> Optional[tuple]:
    if not value:
        return None
    parts = value.split(",")
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


@dataclass
class StravaResponse:
    status_code: int
    payload: Any
    usage: RateLimitUsage


class StravaClient:
    """
    Async wrapper over the Strava HTTP API.

    Args:
        http: optional httpx.AsyncClient (tests pass one built on MockTransport).
        timeout: per-request timeout in seconds when the client is created here.
        short_term_limit / long_term_limit: quota ceilings assumed when a
            response omits X-RateLimit-Limit.
    """

    def __init__(
        self,
        http: Optional[httpx.AsyncClient] = None,
        *,
        timeout: float = 30.0,
        short_term_limit: int = DEFAULT_SHORT_TERM_LIMIT,
        long_term_limit: int = DEFAULT_LONG_TERM_LIMIT,
    ):
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._short_term_limit = short_term_limit
        self._long_term_limit = long_term_limit

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _get(
        self,
        path: str,
        access_token: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> StravaResponse:
        response = await self._http.get(
            f"{API_URL}{path}",
            headers={"Authorization": f"Bearer {access_token}"},
            params=params,
        )
        usage = RateLimitUsage.from_headers(
            response.headers, self._short_term_limit, self._long_term_limit
        )
        logger.debug(
            "GET %s → %s (usage %d/%d, %d/%d)",
            path,
            response.status_code,
            usage.short_term_usage,
            usage.short_term_limit,
            usage.long_term_usage,
            usage.long_term_limit,
        )
        try:
            payload = response.json()
        except ValueError:
            payload = None
        return StravaResponse(response.status_code, payload, usage)

    # ── Data calls ───────────────────────────────────────────────────────────

    async def get_athlete_stats(self, access_token: str, athlete_id: int) -> StravaResponse:
        return await self._get(f"/athletes/{athlete_id}/stats", access_token)

    async def list_activities(
        self,
        access_token: str,
        *,
        after: int,
        page: int = 1,
        per_page: int = 200,
    ) -> StravaResponse:
        return await self._get(
            "/athlete/activities",
            access_token,
            {"after": after, "page": page, "per_page": per_page},
        )

    async def get_activity(
        self,
        access_token: str,
        activity_id: int,
        include_all_efforts: bool = True,
    ) -> StravaResponse:
        return await self._get(
            f"/activities/{activity_id}",
            access_token,
            {"include_all_efforts": str(include_all_efforts).lower()},
        )

    async def get_segment_leaderboard(
        self,
        access_token: str,
        segment_id: int,
        *,
        per_page: int = 1,
        context_entries: int = 0,
    ) -> StravaResponse:
        return await self._get(
            f"/segments/{segment_id}/leaderboard",
            access_token,
            {"per_page": per_page, "context_entries": context_entries},
        )

    # ── OAuth ────────────────────────────────────────────────────────────────

    @staticmethod
    def authorization_url(
        client_id: str,
        redirect_uri: str,
        state: Optional[str] = None,
        scope: str = DEFAULT_SCOPE,
        approval_prompt: str = "force",
    ) -> str:
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "approval_prompt": approval_prompt,
            "scope": scope,
        }
        if state:
            params["state"] = state
        return f"{OAUTH_URL}/authorize?{urlencode(params)}"

    async def _token_request(self, data: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._http.post(f"{OAUTH_URL}/token", data=data)
        if response.status_code != 200:
            logger.error("Strava token request failed: %s", response.text)
            raise StravaOAuthError(
                f"Token request failed: {response.status_code}"
            )
        return response.json()

    async def exchange_code(self, client_id: str, client_secret: str, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for tokens (includes `athlete`)."""
        return await self._token_request(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "grant_type": "authorization_code",
            }
        )

    async def refresh_token(self, client_id: str, client_secret: str, refresh_token: str) -> Dict[str, Any]:
        return await self._token_request(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )

    async def deauthorize(self, access_token: str) -> bool:
        """Revoke access for the token's athlete."""
        response = await self._http.post(
            f"{OAUTH_URL}/deauthorize",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        return response.status_code == 200
