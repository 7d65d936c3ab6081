"""
Experiment lifecycle rules.

    draft -> active -> {paused, completed}
    paused -> {active, completed}
    completed is terminal

`decide` evaluates the automatic rules in a fixed order and returns the first
one that applies, so at most one transition fires per experiment per sweep.
Resuming a paused experiment is a manual action and never happens here.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable

from models.events import EventRecord, as_utc
from models.experiments import ExperimentRecord, ExperimentSettings, ExperimentStatus
from models.results import ExperimentOutcome, SignificanceVerdict, VariantStats
from models.sweep import TransitionKind
from services.aggregation import aggregate, mean_conversion_rate, total_impressions
from services.errors import MalformedExperimentError
from services.significance import SIGNIFICANCE_CONFIDENCE, evaluate

LOW_PERFORMANCE_REASON = "low_performance"
END_DATE_REASON = "end_date_reached"
WINNER_REASON = "winner_declared"

ALLOWED_TRANSITIONS: dict[ExperimentStatus, frozenset[ExperimentStatus]] = {
    ExperimentStatus.DRAFT: frozenset({ExperimentStatus.ACTIVE}),
    ExperimentStatus.ACTIVE: frozenset({ExperimentStatus.PAUSED, ExperimentStatus.COMPLETED}),
    ExperimentStatus.PAUSED: frozenset({ExperimentStatus.ACTIVE, ExperimentStatus.COMPLETED}),
    ExperimentStatus.COMPLETED: frozenset(),
}


def can_transition(current: ExperimentStatus, target: ExperimentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class LifecycleThresholds:
    """Numbers the automatic rules compare against. Injected so tests and config can override them."""
    min_impressions_per_variant: int = 100
    min_confidence_percent: float = SIGNIFICANCE_CONFIDENCE
    low_performance_min_impressions: int = 500
    low_performance_max_conversion_rate: float = 0.01

    def for_experiment(self, settings: ExperimentSettings) -> "LifecycleThresholds":
        """Apply the per-experiment overrides stored in its metadata."""
        overrides = {}
        if settings.min_sample_size is not None:
            overrides["min_impressions_per_variant"] = settings.min_sample_size
        if settings.min_confidence is not None:
            overrides["min_confidence_percent"] = settings.min_confidence
        return replace(self, **overrides) if overrides else self


@dataclass
class TransitionDecision:
    """A transition to apply plus the fields to write with it."""
    kind: TransitionKind
    from_status: ExperimentStatus
    to_status: ExperimentStatus
    fields: dict = field(default_factory=dict)
    stats: dict[int, VariantStats] | None = None
    verdict: SignificanceVerdict | None = None

    @property
    def outcome(self) -> ExperimentOutcome | None:
        return self.fields.get("results")


def build_outcome(stats: dict[int, VariantStats], verdict: SignificanceVerdict) -> ExperimentOutcome:
    winner = stats[verdict.winner_variant_id]
    return ExperimentOutcome(
        total_participants=total_impressions(stats),
        variant_stats={variant_id: s.model_copy() for variant_id, s in stats.items()},
        winner=winner.variant_id,
        winner_name=winner.variant_name,
        runner_up=verdict.runner_up_variant_id,
        confidence_level=verdict.confidence_percent,
        z_score=verdict.z_score,
        relative_improvement_percent=verdict.relative_improvement_percent,
    )


def _should_start(experiment: ExperimentRecord, now: datetime) -> bool:
    return (
        experiment.status == ExperimentStatus.DRAFT
        and experiment.start_date is not None
        and now >= experiment.start_date
    )


def _should_expire(experiment: ExperimentRecord, now: datetime) -> bool:
    return (
        experiment.status in (ExperimentStatus.ACTIVE, ExperimentStatus.PAUSED)
        and experiment.end_date is not None
        and now >= experiment.end_date
    )


def has_enough_data(stats: dict[int, VariantStats], thresholds: LifecycleThresholds) -> bool:
    return all(s.impressions >= thresholds.min_impressions_per_variant for s in stats.values())


def _is_low_performance(
    experiment: ExperimentRecord,
    stats: dict[int, VariantStats],
    thresholds: LifecycleThresholds,
) -> bool:
    return (
        experiment.metadata.auto_pause_low_performance
        and total_impressions(stats) >= thresholds.low_performance_min_impressions
        and mean_conversion_rate(stats) < thresholds.low_performance_max_conversion_rate
    )


def decide(
    experiment: ExperimentRecord,
    events: Iterable[EventRecord],
    now: datetime,
    thresholds: LifecycleThresholds = LifecycleThresholds(),
) -> TransitionDecision | None:
    """
    Return the transition the sweep should apply to `experiment`, or None.

    Rules, in order: scheduled start, end-date expiry, winner declaration,
    low-performance pause.
    """
    if experiment.status == ExperimentStatus.COMPLETED:
        return None
    if not experiment.variants:
        raise MalformedExperimentError(f"Experiment {experiment.id} has no variants.")

    now = as_utc(now)
    status = experiment.status

    if _should_start(experiment, now):
        return TransitionDecision(
            kind=TransitionKind.STARTED,
            from_status=status,
            to_status=ExperimentStatus.ACTIVE,
            fields={"status": ExperimentStatus.ACTIVE},
        )

    if _should_expire(experiment, now):
        # results stay as they are: absent unless a winner was already recorded
        return TransitionDecision(
            kind=TransitionKind.EXPIRED,
            from_status=status,
            to_status=ExperimentStatus.COMPLETED,
            fields={
                "status": ExperimentStatus.COMPLETED,
                "completed_at": now,
                "completion_reason": END_DATE_REASON,
            },
        )

    if status != ExperimentStatus.ACTIVE:
        return None

    thresholds = thresholds.for_experiment(experiment.metadata)
    stats = aggregate(experiment.variants, events, experiment_id=experiment.id)

    if experiment.metadata.auto_declare_winner and has_enough_data(stats, thresholds):
        verdict = evaluate(stats, confidence_threshold=thresholds.min_confidence_percent)
        if verdict.is_significant:
            return TransitionDecision(
                kind=TransitionKind.WINNER_DECLARED,
                from_status=status,
                to_status=ExperimentStatus.COMPLETED,
                fields={
                    "status": ExperimentStatus.COMPLETED,
                    "results": build_outcome(stats, verdict),
                    "completed_at": now,
                    "completion_reason": WINNER_REASON,
                },
                stats=stats,
                verdict=verdict,
            )

    if _is_low_performance(experiment, stats, thresholds):
        return TransitionDecision(
            kind=TransitionKind.PAUSED_LOW_PERFORMANCE,
            from_status=status,
            to_status=ExperimentStatus.PAUSED,
            fields={
                "status": ExperimentStatus.PAUSED,
                "paused_reason": LOW_PERFORMANCE_REASON,
                "paused_at": now,
            },
            stats=stats,
        )

    return None
