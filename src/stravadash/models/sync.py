"""Sync run record, one per configuration."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SyncStatus(BaseModel):
    """Outcome of the most recent sync cycle for one dashboard configuration."""

    identifier: str
    status: str = "never_run"  # "running", "success", "partial", "error", "skipped"
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    activities_fetched: int = 0
    activities_checked: int = 0
    segments_scanned: int = 0
    stopped_by: Optional[str] = None  # StopReason value when a stage ended early
    error_message: Optional[str] = None
