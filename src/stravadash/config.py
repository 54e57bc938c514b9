from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_dir: Path = Path.home() / ".stravadash"
    tokens_file_name: str = "tokens.json"
    cache_dir_name: str = "cache"
    host: str = "0.0.0.0"
    port: int = 8080
    public_url: str = ""  # e.g. "http://mirror.local:8080"; falls back to the request host
    short_term_limit: int = 600
    long_term_limit: int = 30000
    detail_concurrency: int = 10
    leaderboard_concurrency: int = 10
    request_timeout: float = 30.0
    token_refresh_margin: int = 300  # seconds before expires_at

    class Config:
        env_prefix = "STRAVADASH_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def tokens_file(self) -> Path:
        return self.data_dir / self.tokens_file_name

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / self.cache_dir_name


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


# ─── Dashboard configuration (inbound GET_STRAVA_DATA payload) ────────────────

class RecordsConfig(BaseModel):
    enabled: bool = True
    max_entries: Optional[int] = 10  # None keeps every effort


class RankingsConfig(BaseModel):
    enabled: bool = True
    batch_size: int = Field(default=50, ge=1)


class SegmentsConfig(BaseModel):
    enabled: bool = True
    transport_retries: int = Field(default=2, ge=0)


class AnalysisConfig(BaseModel):
    years: int = Field(default=3, ge=1)
    effort_weeks: int = Field(default=12, ge=1)
    recent_count: int = Field(default=10, ge=1)


class DashboardConfig(BaseModel):
    """
    One dashboard configuration, as sent by the presentation layer.

    Accepts the camelCase option names used by existing widget configs
    (fetchInterval, updateInterval, runningGoal) alongside snake_case.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    identifier: str = "default"
    client_id: str = ""
    client_secret: str = ""
    access_token: Optional[str] = None  # legacy manual override
    strava_id: Optional[int] = None     # legacy manual override
    units: Literal["metric", "imperial"] = "metric"
    locale: str = "en"
    mode: str = "chart"
    period: Literal["recent", "ytd", "all"] = "recent"
    activities: List[str] = Field(default_factory=lambda: ["ride", "run", "swim"])
    stats: List[str] = Field(default_factory=lambda: ["count", "distance", "achievements"])
    auto_rotate: bool = False
    fetch_interval: int = Field(default=15 * 60 * 1000, alias="fetchInterval", gt=0)
    update_interval: int = Field(default=60 * 60 * 1000, alias="updateInterval", gt=0)
    debug: bool = False

    goals: Dict[str, float] = Field(default_factory=lambda: {"run": 750.0})  # km per year
    records: RecordsConfig = Field(default_factory=RecordsConfig)
    rankings: RankingsConfig = Field(default_factory=RankingsConfig)
    segments: SegmentsConfig = Field(default_factory=SegmentsConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)

    @model_validator(mode="before")
    @classmethod
    def _normalise_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # {"identifier": ..., "config": {...}} envelope from the widget frontend
        if isinstance(data.get("config"), dict):
            envelope = data.pop("config")
            data = {**envelope, **data}
        if "runningGoal" in data:
            goals = dict(data.get("goals") or {"run": 750.0})
            goals["run"] = data.pop("runningGoal")
            data["goals"] = goals
        for key in ("mode", "period"):
            if isinstance(data.get(key), str):
                data[key] = data[key].lower()
        return data

    @property
    def uses_legacy_auth(self) -> bool:
        return bool(self.access_token or self.strava_id)

    def public_dict(self) -> Dict[str, Any]:
        """Config without secrets, for the auth status routes."""
        return self.model_dump(exclude={"client_secret", "access_token"})
