"""Cached activity, segment and personal-record models."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Fields dropped before an activity is cached (bulky, never displayed).
HEAVY_FIELDS = ("map", "splits_metric", "splits_standard", "laps", "photos")


class Activity(BaseModel):
    """
    One Strava activity summary as cached on disk.

    Unknown API fields are kept so the presentation layer sees the full
    summary; `segment_efforts` / `best_efforts` are the compact lists attached
    by segment enrichment.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: int
    name: str = ""
    type: str = ""
    distance: float = 0.0                    # meters
    moving_time: int = 0                     # seconds
    elapsed_time: int = 0                    # seconds
    total_elevation_gain: float = 0.0        # meters
    start_date: Optional[datetime] = None
    start_date_local: Optional[datetime] = None  # wall-clock time, serialized with a Z suffix
    average_speed: Optional[float] = None    # m/s
    suffer_score: Optional[float] = None
    private: bool = False

    segments_checked: bool = Field(
        default=False,
        validation_alias=AliasChoices("segments_checked", "segmentsChecked"),
    )
    segment_efforts: Optional[List[Dict[str, Any]]] = None
    best_efforts: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "Activity":
        """Build an Activity from an API summary, stripping heavy fields."""
        return cls.model_validate(
            {k: v for k, v in raw.items() if k not in HEAVY_FIELDS}
        )

    @property
    def base_type(self) -> str:
        """Activity type with the Virtual prefix merged away (VirtualRide → Ride)."""
        return self.type.replace("Virtual", "")


class SegmentEntry(BaseModel):
    """The athlete's latest standing on a segment leaderboard."""

    rank: int
    time: int                          # elapsed seconds of the athlete's effort
    diff: Optional[int] = None         # rival ahead's time minus ours; None when leading
    date: Optional[datetime] = None
    efforts: Optional[int] = None      # total efforts on the leaderboard
    prev_rank: Optional[int] = None
    rank_changed_at: Optional[datetime] = None
    scanned_at: Optional[datetime] = None


class Segment(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    type: str = ""
    name: str = ""
    distance: float = 0.0
    city: Optional[str] = None
    time: Optional[int] = None         # elapsed time of the effort that discovered it
    entry: Optional[SegmentEntry] = None


class RecordEntry(BaseModel):
    """One personal-best effort in a record bucket."""

    time: int                          # elapsed seconds
    distance: float = 0.0
    speed: Optional[float] = None      # m/s, ride buckets only
    activity_id: int
    date: Optional[datetime] = None


# activity type → bucket name ("1k", "5k", "longest", ...) → entries, best first
RecordTable = Dict[str, Dict[str, List[RecordEntry]]]

# activity type → counts for ranks [1, 2, 3, 4-10]
RankHistogram = Dict[str, List[int]]
