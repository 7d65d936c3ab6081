from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from models.events import as_utc
from models.results import ExperimentOutcome

# --- Lifecycle ---

class ExperimentStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class ExperimentSettings(BaseModel):
    """
    Free-form experiment metadata consumed by the sweep.
    Unknown keys are kept so that UI-owned flags survive a round trip.
    """
    model_config = ConfigDict(extra="allow")

    auto_deploy: bool = False
    auto_pause_low_performance: bool = False
    deployment_environment: str = "production"
    auto_declare_winner: bool = True
    # Per-experiment overrides, None falls back to the configured defaults
    min_confidence: float | None = Field(default=None, ge=0, le=100)
    min_sample_size: int | None = Field(default=None, ge=0)
    notification_recipients: list[str] = Field(default_factory=list)


class VariantDescriptor(BaseModel):
    """One treatment arm. `config` is opaque and only forwarded to deployments."""
    id: int
    name: str
    config: dict[str, Any] = Field(default_factory=dict)


class RejectedExperiment(BaseModel):
    """A stored experiment row that could not be read as an ExperimentRecord."""
    id: int
    name: str | None = None
    error: str


class ExperimentRecord(BaseModel):
    """Experiment as seen by the lifecycle controller (decoupled from the ORM row)."""
    id: int
    name: str
    description: str | None = None
    variants: list[VariantDescriptor] = Field(default_factory=list)
    status: ExperimentStatus = ExperimentStatus.DRAFT
    start_date: datetime | None = None
    end_date: datetime | None = None
    metadata: ExperimentSettings = Field(default_factory=ExperimentSettings)
    results: ExperimentOutcome | None = None
    paused_reason: str | None = None
    paused_at: datetime | None = None
    completed_at: datetime | None = None
    completion_reason: str | None = None

    @field_validator("start_date", "end_date", "paused_at", "completed_at")
    @classmethod
    def normalize_dates(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


# --- Pydantic Models for Requests/Responses ---

class VariantCreate(BaseModel):
    """Defines a variant and its deployment payload."""
    name: str = Field(..., description="The unique name of the variant (e.g., 'red_button').")
    config: dict[str, Any] = Field(default_factory=dict, description="Payload forwarded to the deployment trigger.")

class ExperimentCreate(BaseModel):
    """Schema for creating a new experiment via POST /experiments."""
    name: str
    description: str | None = None
    variants: list[VariantCreate] = Field(..., min_length=1)
    status: ExperimentStatus = ExperimentStatus.DRAFT
    start_date: datetime | None = None
    end_date: datetime | None = None
    metadata: ExperimentSettings = Field(default_factory=ExperimentSettings)

class ExperimentResponse(ExperimentRecord):
    """Schema returned by POST /experiments and GET /experiments/{id}."""
    created_at: datetime | None = None

    class Config:
        from_attributes = True
