from pydantic import BaseModel, Field
from datetime import datetime

class VariantStats(BaseModel):
    """Aggregated counts for a single variant, recomputed every sweep."""
    variant_id: int
    variant_name: str | None = None
    impressions: int = Field(default=0, ge=0)
    conversions: int = Field(default=0, ge=0)
    conversion_rate: float = 0.0 # conversions / impressions, 0.0 without impressions

class SignificanceVerdict(BaseModel):
    """Outcome of the two-proportion z-test between the top two variants."""
    is_significant: bool = False
    confidence_percent: float = Field(default=0.0, ge=0, le=99.9)
    winner_variant_id: int | None = None
    runner_up_variant_id: int | None = None
    z_score: float | None = None
    relative_improvement_percent: float | None = None

class ExperimentOutcome(BaseModel):
    """
    The `results` snapshot written when a winner is declared.
    Holds no timestamps so the same inputs always produce the same snapshot.
    """
    total_participants: int
    variant_stats: dict[int, VariantStats]
    winner: int
    winner_name: str | None = None
    runner_up: int | None = None
    confidence_level: float
    z_score: float | None = None
    relative_improvement_percent: float | None = None

class ExperimentResultsSummary(BaseModel):
    """Schema returned by GET /experiments/{id}/results."""
    experiment_id: int
    experiment_name: str
    status: str
    report_generated_at: datetime
    total_participants: int
    # Key is variant id
    variant_data: dict[int, VariantStats]
    significance: SignificanceVerdict
    # True once every variant passed the minimum sample gate
    sample_size_reached: bool
