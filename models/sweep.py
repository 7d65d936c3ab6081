from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

class TransitionKind(str, Enum):
    STARTED = "started"
    EXPIRED = "expired"
    WINNER_DECLARED = "winner_declared"
    PAUSED_LOW_PERFORMANCE = "paused_low_performance"

class ExperimentSweepResult(BaseModel):
    """What happened to one experiment during a sweep."""
    experiment_id: int
    experiment_name: str | None = None
    transition: TransitionKind | None = None
    from_status: str | None = None
    to_status: str | None = None
    winner_variant_id: int | None = None
    winner_variant_name: str | None = None
    confidence_percent: float | None = None
    deployment_pipeline_id: str | None = None
    deployment_error: str | None = None
    error: str | None = None
    # Informational, e.g. a transition another sweep already applied
    note: str | None = None

class SweepSummary(BaseModel):
    tests_started: int = 0
    tests_paused: int = 0
    tests_completed: int = 0
    winners_declared: int = 0
    deployments_triggered: int = 0
    errors: int = 0

class SweepReport(BaseModel):
    """Machine-readable result of one sweep, returned by POST /sweeps."""
    sweep_id: str
    started_at: datetime
    finished_at: datetime | None = None
    experiments_evaluated: int = 0
    results: list[ExperimentSweepResult] = Field(default_factory=list)
    summary: SweepSummary = Field(default_factory=SweepSummary)
    # Set when the sweep did not run (e.g. another sweep holds the lock)
    skipped_reason: str | None = None
    # Set when the bulk load failed and no experiment could be evaluated
    error: str | None = None

    def transitions(self) -> list[ExperimentSweepResult]:
        return [r for r in self.results if r.transition is not None]

class DeploymentHandle(BaseModel):
    """Returned by the deployment trigger for a declared winner."""
    pipeline_id: str
    experiment_id: int
    experiment_name: str
    winner_variant_id: int
    winner_variant_name: str
    winner_config: dict = Field(default_factory=dict)
    environment: str
    triggered_at: datetime
    deployment_type: str = "automated_ab_test_winner"
    status: str = "pending"
