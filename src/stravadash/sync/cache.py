"""
On-disk caches for activities, segments and personal records.

Each cache is one JSON file holding a full snapshot. A missing, corrupt or
wrongly shaped file loads as empty and is rebuilt from the API; individual
entries that fail validation are dropped with a warning.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Type, TypeVar

from pydantic import BaseModel, ValidationError

from stravadash.models.activity import Activity, RecordEntry, RecordTable, Segment
from stravadash.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

ACTIVITIES_FILE_NAME = "activities.json"
SEGMENTS_FILE_NAME = "segments.json"
RECORDS_FILE_NAME = "records.json"

M = TypeVar("M", bound=BaseModel)


@dataclass
class SyncState:
    """In-memory caches for one sync cycle, passed by reference to each stage."""

    activities: List[Activity] = field(default_factory=list)
    segments: List[Segment] = field(default_factory=list)
    records: RecordTable = field(default_factory=dict)


class SyncCache:
    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)
        self.activities_file = self.cache_dir / ACTIVITIES_FILE_NAME
        self.segments_file = self.cache_dir / SEGMENTS_FILE_NAME
        self.records_file = self.cache_dir / RECORDS_FILE_NAME

    def load(self) -> SyncState:
        state = SyncState(
            activities=self.load_activities(),
            segments=self.load_segments(),
            records=self.load_records(),
        )
        logger.info(
            "Loaded %d activities, %d segments from %s",
            len(state.activities),
            len(state.segments),
            self.cache_dir,
        )
        return state

    # ── Activities / segments ────────────────────────────────────────────────

    def load_activities(self) -> List[Activity]:
        return self._load_list(self.activities_file, Activity)

    def save_activities(self, activities: List[Activity]) -> None:
        write_json_atomic(
            self.activities_file,
            [a.model_dump(mode="json", exclude_none=True) for a in activities],
        )
        logger.info("Activities file has been saved (%d activities)", len(activities))

    def load_segments(self) -> List[Segment]:
        return self._load_list(self.segments_file, Segment)

    def save_segments(self, segments: List[Segment]) -> None:
        write_json_atomic(
            self.segments_file,
            [s.model_dump(mode="json", exclude_none=True) for s in segments],
        )
        logger.info("Segments file has been saved (%d segments)", len(segments))

    def _load_list(self, path: Path, model: Type[M]) -> List[M]:
        raw = read_json(path, [])
        if not isinstance(raw, list):
            logger.warning("Cache file %s is not a list; starting empty", path)
            return []

        items: List[M] = []
        for entry in raw:
            try:
                items.append(model.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Dropping invalid cache entry in %s: %s", path.name, exc)
        return items

    # ── Records ──────────────────────────────────────────────────────────────

    def load_records(self) -> RecordTable:
        raw = read_json(self.records_file, {})
        if not isinstance(raw, dict):
            logger.warning("Cache file %s is not a mapping; starting empty", self.records_file)
            return {}

        table: RecordTable = {}
        for activity_type, buckets in raw.items():
            if not isinstance(buckets, dict):
                continue
            for bucket, entries in buckets.items():
                try:
                    table.setdefault(activity_type, {})[bucket] = [
                        RecordEntry.model_validate(e) for e in entries
                    ]
                except (TypeError, ValidationError) as exc:
                    logger.warning("Dropping record bucket %s/%s: %s", activity_type, bucket, exc)
        return table

    def save_records(self, records: RecordTable) -> None:
        write_json_atomic(self.records_file, dump_records(records))
        logger.info("Records file has been saved")


def dump_records(records: RecordTable) -> dict:
    """JSON-ready copy of a record table."""
    return {
        activity_type: {
            bucket: [e.model_dump(mode="json", exclude_none=True) for e in entries]
            for bucket, entries in buckets.items()
        }
        for activity_type, buckets in records.items()
    }
