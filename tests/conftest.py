"""Shared test fixtures."""
import json
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from stravadash.config import Settings
from stravadash.models.activity import Activity, Segment, SegmentEntry
from stravadash.strava.client import RateLimitUsage
from stravadash.strava.gateway import StravaGateway

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _load(name: str):
    return json.loads((FIXTURES_DIR / name).read_text())


@pytest.fixture
def load_fixture():
    """load_fixture("strava_leaderboard.json") → parsed JSON."""
    return _load


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(data_dir=tmp_path / "data")


@pytest.fixture
def exhausted_usage() -> RateLimitUsage:
    return RateLimitUsage(short_term_usage=600, long_term_usage=1200)


@pytest.fixture
def make_activity():
    """Factory for cached activities; start dates count back one day per id from 2026-10-12."""

    def factory(activity_id: int, **fields) -> Activity:
        data = {
            "id": activity_id,
            "name": f"Activity {activity_id}",
            "type": "Run",
            "distance": 5000.0,
            "moving_time": 1500,
            "elapsed_time": 1550,
            "total_elevation_gain": 30.0,
            "start_date_local": datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc),
        }
        data.update(fields)
        return Activity.model_validate(data)

    return factory


@pytest.fixture
def make_segment():
    def factory(segment_id: int, rank=None, segment_type: str = "Run", **entry_fields) -> Segment:
        entry = None
        if rank is not None:
            entry = SegmentEntry(rank=rank, time=entry_fields.pop("time", 300), **entry_fields)
        return Segment(id=segment_id, type=segment_type, name=f"Segment {segment_id}", entry=entry)

    return factory


@pytest.fixture
def gateway() -> AsyncMock:
    """StravaGateway stand-in; set side_effect / return_value per method in each test."""
    mock = AsyncMock(spec=StravaGateway)
    mock.access_token = "access-abc"
    return mock
