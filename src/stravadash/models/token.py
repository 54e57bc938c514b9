"""OAuth credential models persisted in the credentials file."""
from typing import Any, Optional

from pydantic import BaseModel, model_validator


class Token(BaseModel):
    """
    Token payload as returned by the Strava OAuth token endpoint.

    The exchange response nests the athlete (`{"athlete": {"id": ...}}`);
    only the id is kept.
    """

    token_type: str = "Bearer"
    access_token: str
    refresh_token: str = ""
    expires_at: int = 0  # epoch seconds
    athlete_id: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_athlete(cls, data: Any) -> Any:
        if isinstance(data, dict) and "athlete" in data:
            data = dict(data)
            athlete = data.pop("athlete") or {}
            if data.get("athlete_id") is None and isinstance(athlete, dict):
                data["athlete_id"] = athlete.get("id")
        return data

    def is_expiring(self, now: float, margin: int = 0) -> bool:
        return bool(self.expires_at) and self.expires_at <= now + margin


class Credential(BaseModel):
    client_id: str
    token: Token
