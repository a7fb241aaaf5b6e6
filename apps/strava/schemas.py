"""
Pydantic schemas for the Strava mirror API.

Defines request bodies and the public user shape (no token fields).
"""
from datetime import date
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class AppConfigRequest(BaseModel):
    """Strava OAuth application credentials."""
    client_id: str = Field(..., min_length=1, max_length=100)
    client_secret: str = Field(..., min_length=1, max_length=200)

    @field_validator("client_id", "client_secret")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class SyncConfigRequest(BaseModel):
    """Earliest activity start date a sync pass requests."""
    sync_since: date


class UserResponse(BaseModel):
    """Public view of a linked athlete."""
    strava_id: int
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    profile_pic: Optional[str] = None
    expires_at: Optional[int] = None
    last_synced_at: Optional[int] = None
    sync_since: Optional[date] = None
