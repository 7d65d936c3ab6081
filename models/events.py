from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any
from datetime import datetime, timezone
from enum import Enum

class EventType(str, Enum):
    IMPRESSION = "impression"
    CONVERSION = "conversion"

def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes, they are stored as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

class EventRecord(BaseModel):
    """An immutable exposure or conversion event as read by the sweep."""
    model_config = ConfigDict(frozen=True)

    experiment_id: int
    variant_id: int
    # Kept as a plain string, unrecognized types are ignored by aggregation
    event_type: str
    timestamp: datetime
    user_id: str | None = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

class EventCreate(BaseModel):
    """Schema for recording a new event via POST /events."""
    experiment_id: int
    variant_id: int
    event_type: str = Field(..., description="Type of event ('impression' or 'conversion').")
    user_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    properties: dict[str, Any] | None = Field(default_factory=dict, description="Flexible JSON for extra context.")
