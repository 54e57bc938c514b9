"""OAuth redirect dance routes (mounted under /strava/auth)."""
import logging
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from stravadash.strava.auth import TokenNotFoundError
from stravadash.strava.client import StravaOAuthError
from stravadash.strava.sync_service import AUTH_PATH, ConfigurationError, SyncManager

logger = logging.getLogger(__name__)

router = APIRouter()


def get_manager(request: Request) -> SyncManager:
    return request.app.state.manager


def _back_to_status(**params) -> RedirectResponse:
    return RedirectResponse(f"{AUTH_PATH}?{urlencode(params)}")


@router.get("/")
def auth_status(
    status: Optional[str] = None,
    error: Optional[str] = None,
    manager: SyncManager = Depends(get_manager),
):
    """Authorisation page data: outcome of the last exchange plus every known module."""
    return {"status": status, "error": error, "modules": manager.auth_status()}


@router.get("/modules")
def list_modules(manager: SyncManager = Depends(get_manager)):
    """Configured modules, secrets excluded."""
    return [config.public_dict() for config in manager.configs.values()]


@router.get("/request")
def request_authorisation(
    request: Request,
    state: str,
    manager: SyncManager = Depends(get_manager),
):
    """Send the browser to Strava's consent page for module `state`."""
    try:
        url = manager.authorization_url(state, str(request.base_url))
    except ConfigurationError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    logger.info("Requesting authorisation for %s", state)
    return RedirectResponse(url)


@router.get("/exchange")
async def exchange(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    manager: SyncManager = Depends(get_manager),
):
    """OAuth callback: swap the code for tokens and return to the status page."""
    if error or not code or not state:
        return _back_to_status(error=error or "missing code or state")
    try:
        await manager.exchange_code(state, code)
    except (ConfigurationError, StravaOAuthError, httpx.HTTPError) as exc:
        logger.error("Token exchange for %s failed: %s", state, exc)
        return _back_to_status(error=str(exc))
    return _back_to_status(status="success")


@router.post("/deauthorize")
async def deauthorize(state: str, manager: SyncManager = Depends(get_manager)):
    """Revoke access for module `state` and delete its stored credential."""
    try:
        revoked = await manager.deauthorize(state)
    except (ConfigurationError, TokenNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"identifier": state, "revoked": revoked}
