"""
Personal-record table maintenance.

Run-style buckets are keyed by Strava's best-effort names ("400m", "1k",
"5k", "Half-Marathon", ...) and ordered fastest time first. Rides have no
best efforts in the API, so each ride competes in two derived buckets:
"longest" (distance, longest first) and "fastest" (average speed, fastest
first). Buckets are re-sorted after every insertion.
"""
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from stravadash.models.activity import Activity, RecordEntry, RecordTable

LONGEST = "longest"
FASTEST = "fastest"

_DESCENDING_KEYS: Dict[str, Callable[[RecordEntry], float]] = {
    LONGEST: lambda e: e.distance,
    FASTEST: lambda e: e.speed or 0.0,
}


def sort_bucket(bucket: str, entries: list) -> None:
    """Sort in place: descending for ride buckets, ascending elapsed time otherwise."""
    key = _DESCENDING_KEYS.get(bucket)
    if key is not None:
        entries.sort(key=key, reverse=True)
    else:
        entries.sort(key=lambda e: e.time)


def insert_record(
    table: RecordTable,
    activity_type: str,
    bucket: str,
    entry: RecordEntry,
    max_entries: Optional[int] = None,
) -> bool:
    """
    Add one entry to a bucket and restore its ordering.

    An activity appears at most once per bucket, so re-enriching an activity
    is harmless. With `max_entries`, the bucket is cut to the best N.

    Returns:
        True if the entry is in the bucket after insertion.
    """
    entries = table.setdefault(activity_type, {}).setdefault(bucket, [])
    if any(e.activity_id == entry.activity_id for e in entries):
        return False
    entries.append(entry)
    sort_bucket(bucket, entries)
    if max_entries is not None:
        del entries[max_entries:]
    return any(e is entry for e in entries)


def insert_best_efforts(
    table: RecordTable,
    activity_type: str,
    efforts: Iterable[Dict[str, Any]],
    activity_id: int,
    date: Optional[datetime] = None,
    max_entries: Optional[int] = None,
) -> int:
    """Insert the best efforts of one activity. Returns how many were kept."""
    kept = 0
    for effort in efforts:
        name = effort.get("name")
        elapsed = effort.get("elapsed_time")
        if not name or elapsed is None:
            continue
        entry = RecordEntry(
            time=int(elapsed),
            distance=float(effort.get("distance") or 0.0),
            activity_id=activity_id,
            date=effort.get("start_date_local") or date,
        )
        if insert_record(table, activity_type, name, entry, max_entries):
            kept += 1
    return kept


def insert_ride_records(
    table: RecordTable,
    activity: Activity,
    max_entries: Optional[int] = None,
) -> int:
    """Insert a ride into the "longest" and "fastest" buckets of its type."""
    if activity.distance <= 0 or activity.moving_time <= 0:
        return 0
    speed = activity.average_speed or activity.distance / activity.moving_time
    kept = 0
    for bucket in (LONGEST, FASTEST):
        entry = RecordEntry(
            time=activity.moving_time,
            distance=activity.distance,
            speed=speed,
            activity_id=activity.id,
            date=activity.start_date_local,
        )
        if insert_record(table, activity.base_type, bucket, entry, max_entries):
            kept += 1
    return kept
