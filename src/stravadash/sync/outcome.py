"""Stage results shared by the sync stages and the orchestrator."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from stravadash.strava.gateway import ApiResult, Fault, QuotaExceeded, TransportFailure


class StopReason(str, Enum):
    QUOTA = "quota"
    TRANSPORT = "transport"
    FAULT = "fault"
    AUTH = "auth"


class AuthFaultError(RuntimeError):
    """Raised after a checkpoint when Strava rejected the access token."""


@dataclass
class StageOutcome:
    """What a stage did this cycle and, if it ended early, why."""

    processed: int = 0
    changed: int = 0
    stopped_by: Optional[StopReason] = None

    @property
    def quota_exhausted(self) -> bool:
        return self.stopped_by is StopReason.QUOTA


def stop_reason(result: ApiResult) -> Optional[StopReason]:
    """The StopReason a result implies for a sequential stage, if any."""
    if isinstance(result, Fault):
        return StopReason.AUTH if result.is_invalid_token else StopReason.FAULT
    if isinstance(result, TransportFailure):
        return StopReason.TRANSPORT
    if isinstance(result, QuotaExceeded) or result.quota_exhausted:
        return StopReason.QUOTA
    return None


# Most severe first; a stage reports the most severe reason it saw.
_SEVERITY = (StopReason.AUTH, StopReason.QUOTA, StopReason.TRANSPORT, StopReason.FAULT)


def worst_reason(current: Optional[StopReason], new: Optional[StopReason]) -> Optional[StopReason]:
    if current is None or new is None:
        return current or new
    return min(current, new, key=_SEVERITY.index)
