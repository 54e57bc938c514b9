"""
Crown scanner: leaderboard standings for cached segments.

Each cycle scans one fixed-size batch of the segment cache starting at a
rotating cursor, so leaderboard traffic per cycle is bounded no matter how
many segments are cached. The cursor advances past every segment that was
actually requested and wraps to zero once it runs off the end of the cache.
It stops at the first segment skipped for quota or rejected for an invalid
token, so the next cycle (or the retry after a refresh) starts there.

The leaderboard is requested with per_page=1 and context_entries=0, which
returns the leader and, when the athlete is not first, the athlete's own
entry. So with two entries the second is ours and the first is the rival
ahead; with one entry, it is ours.

After the batch, the rank histogram is rebuilt from every cached entry, not
only the batch.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from stravadash.models.activity import RankHistogram, Segment, SegmentEntry
from stravadash.strava.gateway import Fault, QuotaExceeded, StravaGateway, TransportFailure
from stravadash.sync.fanout import fan_out
from stravadash.sync.outcome import StageOutcome, StopReason, worst_reason

logger = logging.getLogger(__name__)

RANK_BUCKETS = ("1", "2", "3", "4-10")
MAX_RANK = 10
DEFAULT_TYPES = ("Run", "Ride")


@dataclass
class ScanOutcome(StageOutcome):
    cursor: int = 0
    rankings: RankHistogram = field(default_factory=dict)


def rank_bucket(rank: int) -> Optional[int]:
    """Histogram index for a rank, or None for ranks outside the top ten."""
    if rank < 1 or rank > MAX_RANK:
        return None
    return min(rank, 4) - 1


def build_rankings(segments: List[Segment]) -> RankHistogram:
    """Count current ranks 1, 2, 3 and 4-10 per segment type across the whole cache."""
    rankings: RankHistogram = {t: [0] * len(RANK_BUCKETS) for t in DEFAULT_TYPES}
    for segment in segments:
        if segment.entry is None:
            continue
        index = rank_bucket(segment.entry.rank)
        if index is None:
            continue
        counts = rankings.setdefault(segment.type or "Ride", [0] * len(RANK_BUCKETS))
        counts[index] += 1
    return rankings


def updated_entry(
    previous: Optional[SegmentEntry],
    leaderboard: Any,
    now: datetime,
) -> Optional[SegmentEntry]:
    """
    Build the athlete's new SegmentEntry from a leaderboard response.

    When the rank moved, the old rank is kept as prev_rank with the time of
    the change; otherwise any earlier change marker is carried forward.
    Returns None when the leaderboard has no entries.
    """
    if not isinstance(leaderboard, dict):
        return None
    entries = leaderboard.get("entries") or []
    if not entries:
        return None

    if len(entries) == 2:
        ahead, mine = entries
        diff = ahead.get("elapsed_time", 0) - mine.get("elapsed_time", 0)
    else:
        mine, diff = entries[0], None

    entry = SegmentEntry(
        rank=mine.get("rank", 0),
        time=mine.get("elapsed_time", 0),
        diff=diff,
        date=mine.get("start_date_local"),
        efforts=leaderboard.get("effort_count"),
        scanned_at=now,
    )
    if previous is not None:
        if previous.rank != entry.rank:
            entry.prev_rank = previous.rank
            entry.rank_changed_at = now
        else:
            entry.prev_rank = previous.prev_rank
            entry.rank_changed_at = previous.rank_changed_at
    return entry


class CrownScanner:
    def __init__(self, gateway: StravaGateway, *, batch_size: int = 50, concurrency: int = 10):
        self.gateway = gateway
        self.batch_size = batch_size
        self.concurrency = concurrency

    async def _leaderboard(self, segment: Segment):
        return await self.gateway.get_segment_leaderboard(segment.id)

    async def scan(
        self,
        segments: List[Segment],
        cursor: int = 0,
        now: Optional[datetime] = None,
    ) -> ScanOutcome:
        """
        Scan one batch starting at `cursor`, updating segment entries in place.

        Returns:
            ScanOutcome with the cursor for the next cycle and the rebuilt
            histogram. processed = leaderboards read, changed = rank changes.
        """
        now = now or datetime.now(timezone.utc)
        if not segments:
            return ScanOutcome(cursor=0, rankings=build_rankings(segments))

        start = cursor if 0 <= cursor < len(segments) else 0
        batch = segments[start:start + self.batch_size]
        logger.info("Scanning leaderboards for segments %d-%d of %d", start, start + len(batch) - 1, len(segments))

        results = await fan_out(batch, self._leaderboard, limit=self.concurrency)

        outcome = ScanOutcome()
        first_unscanned: Optional[int] = None
        for index, (segment, result) in enumerate(results):
            reason = None
            if result is None or isinstance(result, QuotaExceeded):
                reason = StopReason.QUOTA
                if first_unscanned is None:
                    first_unscanned = index
            elif isinstance(result, TransportFailure):
                reason = StopReason.TRANSPORT
            elif isinstance(result, Fault) and result.is_invalid_token:
                # rescanned by the retry cycle after the token refresh
                reason = StopReason.AUTH
                if first_unscanned is None:
                    first_unscanned = index
            elif isinstance(result, Fault):
                reason = StopReason.FAULT
            else:
                entry = updated_entry(segment.entry, result.data, now)
                if entry is not None:
                    if segment.entry is not None and segment.entry.rank != entry.rank:
                        outcome.changed += 1
                        logger.info(
                            "Segment %s rank %s → %s", segment.id, segment.entry.rank, entry.rank
                        )
                    segment.entry = entry
                    outcome.processed += 1
                if result.quota_exhausted:
                    reason = StopReason.QUOTA
            outcome.stopped_by = worst_reason(outcome.stopped_by, reason)

        scanned = len(batch) if first_unscanned is None else first_unscanned
        outcome.cursor = start + scanned
        outcome.rankings = build_rankings(segments)
        logger.info("Rankings: %s", outcome.rankings)
        return outcome
