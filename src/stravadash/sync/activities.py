"""
Incremental activity fetch.

Only activities newer than the cached ones are requested: the `after` cursor
is the newest cached start time plus one minute (or 2000-01-01 for an empty
cache). Strava compares `after` with the UTC start, so each activity counts
with the earlier of its UTC start and its wall-clock start_date_local read
as UTC. That never skips an activity east of UTC; the overlap it can cause
west of UTC is absorbed by the id dedup.

Pages of 200 are requested until a page comes back short; a short page is
the only end-of-data signal. New activities are appended to the cached
list, deduplicated by id, with bulky fields stripped.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from pydantic import ValidationError

from stravadash.models.activity import Activity
from stravadash.strava.gateway import Ok, StravaGateway
from stravadash.sync.outcome import StageOutcome, StopReason, stop_reason

logger = logging.getLogger(__name__)

EPOCH_START = 946684800  # 2000-01-01T00:00:00Z, "all history"
PER_PAGE = 200
CURSOR_OFFSET_SECONDS = 60


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _start(activity: Activity) -> Optional[datetime]:
    starts = [_as_utc(d) for d in (activity.start_date, activity.start_date_local) if d]
    return min(starts) if starts else None


def after_cursor(activities: List[Activity]) -> int:
    """Epoch seconds to pass as `after` for the next incremental fetch."""
    dates = [d for d in map(_start, activities) if d]
    if not dates:
        return EPOCH_START
    return int(max(dates).timestamp()) + CURSOR_OFFSET_SECONDS


def merge_activities(existing: List[Activity], new: Iterable[Activity]) -> int:
    """
    Append activities whose id is not already cached. Mutates `existing`.

    Cached entries are never replaced, so enrichment state
    (segments_checked, best_efforts, ...) survives a re-fetch.

    Returns:
        Number of activities added.
    """
    seen = {a.id for a in existing}
    added = 0
    for activity in new:
        if activity.id in seen:
            continue
        existing.append(activity)
        seen.add(activity.id)
        added += 1
    return added


def _parse_page(raw_page: list) -> List[Activity]:
    activities = []
    for raw in raw_page:
        try:
            activities.append(Activity.from_api(raw))
        except (AttributeError, TypeError, ValidationError) as exc:
            logger.warning("Skipping unparseable activity: %s", exc)
    return activities


class ActivityFetcher:
    def __init__(self, gateway: StravaGateway, per_page: int = PER_PAGE):
        self.gateway = gateway
        self.per_page = per_page

    async def fetch(self, activities: List[Activity]) -> StageOutcome:
        """
        Fetch new activities and merge them into `activities` in place.

        A fault, transport failure or quota signal stops pagination; pages
        merged before that point stay merged so the caller can persist them.
        """
        outcome = StageOutcome()
        after = after_cursor(activities)
        page = 1

        while True:
            logger.info(
                "Fetching athlete activities after %s, page %d",
                datetime.fromtimestamp(after, tz=timezone.utc).strftime("%Y-%m-%d"),
                page,
            )
            result = await self.gateway.list_activities(
                after=after, page=page, per_page=self.per_page
            )
            if not isinstance(result, Ok):
                outcome.stopped_by = stop_reason(result)
                logger.warning("Activity fetch stopped on page %d (%s)", page, outcome.stopped_by.value)
                break

            batch = result.data if isinstance(result.data, list) else []
            logger.info("%d activities found", len(batch))
            outcome.processed += len(batch)
            outcome.changed += merge_activities(activities, _parse_page(batch))

            if result.quota_exhausted:
                outcome.stopped_by = StopReason.QUOTA
                break
            if len(batch) < self.per_page:
                break
            logger.debug("More to come...")
            page += 1

        logger.info("Fetched %d new activities (%d cached)", outcome.changed, len(activities))
        return outcome
