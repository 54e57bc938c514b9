"""
Segment discovery and personal-record enrichment.

Every cached activity not yet marked segments_checked gets one detail fetch
(include_all_efforts). The fetches run through the bounded fan-out; once all
have resolved, the results are applied in a single pass:

  - segment efforts of non-private activities add unseen segments to the
    segment cache
  - best efforts (runs) and distance/speed (rides) go into the record table
  - the activity is marked segments_checked, unless the failure was
    transient (transport, quota) or the token was rejected

Transport failures are retried a bounded number of times per activity and
otherwise left for the next cycle.
"""
import logging
from typing import Any, Dict, Optional, Set

from stravadash.analysis.records import insert_best_efforts, insert_ride_records
from stravadash.models.activity import Activity, Segment
from stravadash.strava.gateway import ApiResult, Fault, QuotaExceeded, StravaGateway, TransportFailure
from stravadash.sync.cache import SyncState
from stravadash.sync.fanout import fan_out
from stravadash.sync.outcome import StageOutcome, StopReason, worst_reason

logger = logging.getLogger(__name__)


def compact_efforts(detail: Dict[str, Any]) -> list:
    return [
        {
            "segment_id": (e.get("segment") or {}).get("id"),
            "name": e.get("name"),
            "elapsed_time": e.get("elapsed_time"),
        }
        for e in detail.get("segment_efforts") or []
    ]


def compact_best_efforts(detail: Dict[str, Any]) -> list:
    return [
        {
            "name": e.get("name"),
            "elapsed_time": e.get("elapsed_time"),
            "distance": e.get("distance"),
        }
        for e in detail.get("best_efforts") or []
    ]


class SegmentEnricher:
    def __init__(
        self,
        gateway: StravaGateway,
        *,
        concurrency: int = 10,
        transport_retries: int = 2,
        records_enabled: bool = True,
        max_records: Optional[int] = None,
    ):
        self.gateway = gateway
        self.concurrency = concurrency
        self.transport_retries = transport_retries
        self.records_enabled = records_enabled
        self.max_records = max_records

    async def _fetch_detail(self, activity: Activity) -> ApiResult:
        attempt = 0
        while True:
            result = await self.gateway.get_activity_detail(activity.id)
            if not isinstance(result, TransportFailure) or attempt >= self.transport_retries:
                return result
            attempt += 1
            logger.info("Retrying activity %s detail (attempt %d)", activity.id, attempt + 1)

    async def enrich(self, state: SyncState) -> StageOutcome:
        """
        Enrich unchecked activities in `state`, mutating its caches.

        Returns:
            StageOutcome with processed = activities marked checked and
            changed = new segments added.
        """
        outcome = StageOutcome()
        pending = [a for a in state.activities if not a.segments_checked]
        if not pending:
            logger.info("No unchecked activities")
            return outcome

        logger.info("Checking %d activities for segments", len(pending))
        results = await fan_out(pending, self._fetch_detail, limit=self.concurrency)

        known: Set[int] = {s.id for s in state.segments}
        for activity, result in results:
            reason = self._apply(state, activity, result, known, outcome)
            outcome.stopped_by = worst_reason(outcome.stopped_by, reason)

        logger.info(
            "%d activities checked, %d new segments (%d total)",
            outcome.processed,
            outcome.changed,
            len(state.segments),
        )
        return outcome

    def _apply(
        self,
        state: SyncState,
        activity: Activity,
        result: Optional[ApiResult],
        known: Set[int],
        outcome: StageOutcome,
    ) -> Optional[StopReason]:
        if result is None or isinstance(result, QuotaExceeded):
            return StopReason.QUOTA
        if isinstance(result, TransportFailure):
            logger.warning("Activity %s left unchecked: %s", activity.id, result.cause)
            return StopReason.TRANSPORT
        if isinstance(result, Fault):
            if result.is_invalid_token:
                return StopReason.AUTH
            # Permanent failure (deleted activity, no access): do not retry forever
            activity.segments_checked = True
            outcome.processed += 1
            return StopReason.QUOTA if result.quota_exhausted else None

        outcome.changed += self._merge_detail(state, activity, result.data, known)
        activity.segments_checked = True
        outcome.processed += 1
        return StopReason.QUOTA if result.quota_exhausted else None

    def _merge_detail(
        self,
        state: SyncState,
        activity: Activity,
        detail: Any,
        known: Set[int],
    ) -> int:
        if not isinstance(detail, dict):
            return 0

        added = 0
        efforts = detail.get("segment_efforts") or []
        if efforts and not detail.get("private", activity.private):
            for effort in efforts:
                segment = effort.get("segment") or {}
                segment_id = segment.get("id")
                if segment_id is None or segment_id in known:
                    continue
                known.add(segment_id)
                state.segments.append(
                    Segment(
                        id=segment_id,
                        type=segment.get("activity_type") or "",
                        name=segment.get("name") or "",
                        time=effort.get("elapsed_time"),
                        distance=effort.get("distance") or segment.get("distance") or 0.0,
                        city=segment.get("city"),
                    )
                )
                added += 1
            activity.segment_efforts = compact_efforts(detail)
            logger.debug("Activity %s: %d segments found", activity.id, len(efforts))
        else:
            logger.debug("Activity %s: no segments found", activity.id)

        if self.records_enabled:
            best_efforts = detail.get("best_efforts") or []
            if best_efforts:
                activity.best_efforts = compact_best_efforts(detail)
                insert_best_efforts(
                    state.records,
                    activity.base_type,
                    best_efforts,
                    activity.id,
                    activity.start_date_local,
                    self.max_records,
                )
            if activity.base_type == "Ride":
                insert_ride_records(state.records, activity, self.max_records)

        return added
