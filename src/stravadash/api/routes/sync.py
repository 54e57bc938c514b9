"""Inbound configuration, sync trigger, status and event routes (mounted under /strava/sync)."""
from typing import Dict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from stravadash.api.routes.auth import get_manager
from stravadash.config import DashboardConfig
from stravadash.models.sync import SyncStatus
from stravadash.notify import EVENTS
from stravadash.scheduler.jobs import run_sync
from stravadash.strava.sync_service import ConfigurationError, SyncManager

router = APIRouter()


class SyncTriggerRequest(BaseModel):
    identifier: str = "default"


@router.post("/config")
def receive_config(
    config: DashboardConfig,
    background_tasks: BackgroundTasks,
    manager: SyncManager = Depends(get_manager),
):
    """
    GET_STRAVA_DATA: register a dashboard configuration.

    Schedules the recurring sync (first run immediately). Without a scheduler
    a single cycle runs in the background instead.
    """
    orchestrator = manager.configure(config)
    if orchestrator is not None and manager.scheduler is None:
        background_tasks.add_task(run_sync, orchestrator)
    return {"identifier": config.identifier, "authorised": orchestrator is not None}


@router.post("/trigger")
def trigger_sync(
    request: SyncTriggerRequest,
    background_tasks: BackgroundTasks,
    manager: SyncManager = Depends(get_manager),
):
    """Run a sync cycle now. Returns immediately; the cycle runs in the background."""
    try:
        orchestrator = manager.get_orchestrator(request.identifier)
    except ConfigurationError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    background_tasks.add_task(run_sync, orchestrator)
    return {"message": "Sync started", "identifier": request.identifier}


@router.get("/status", response_model=Dict[str, SyncStatus])
def sync_status(manager: SyncManager = Depends(get_manager)):
    """Most recent cycle per configured module."""
    return manager.statuses()


@router.get("/events")
def latest_events(identifier: str = "default", manager: SyncManager = Depends(get_manager)):
    """Latest payload of every notification sent for a module."""
    return manager.notifier.latest(identifier)


@router.get("/events/{name}")
def latest_event(name: str, identifier: str = "default", manager: SyncManager = Depends(get_manager)):
    event = name.upper()
    if event not in EVENTS:
        raise HTTPException(status_code=404, detail=f"Unknown event {name}")
    payload = manager.notifier.latest(identifier, event)
    if payload is None:
        raise HTTPException(status_code=404, detail=f"No {event} sent yet for {identifier}")
    return payload
