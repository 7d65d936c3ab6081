from datetime import datetime, timezone
from fastapi import HTTPException
from config import config
from models.results import ExperimentResultsSummary
from services.aggregation import aggregate, total_impressions
from services.lifecycle import LifecycleThresholds, has_enough_data
from services.significance import evaluate
from services.store import SqlExperimentStore
import logging

logger = logging.getLogger(__name__)


def calculate_summary(
    store: SqlExperimentStore,
    experiment_id: int,
    thresholds: LifecycleThresholds | None = None,
) -> ExperimentResultsSummary:
    """
    Per-variant statistics and the significance verdict for one experiment.
    Uses the same aggregation and calculator as the sweep.
    """
    experiment = store.get_experiment(experiment_id)
    if not experiment:
        raise HTTPException(status_code=404, detail="Experiment not found.")

    thresholds = (thresholds or LifecycleThresholds(
        min_impressions_per_variant=config.min_impressions_per_variant,
        min_confidence_percent=config.min_confidence_percent,
    )).for_experiment(experiment.metadata)

    stats = aggregate(experiment.variants, store.list_events_for(experiment_id), experiment_id=experiment_id)
    verdict = evaluate(stats, confidence_threshold=thresholds.min_confidence_percent)
    sample_size_reached = bool(stats) and has_enough_data(stats, thresholds)
    logger.debug("summary for experiment %d: %s", experiment_id, verdict.model_dump())

    return ExperimentResultsSummary(
        experiment_id=experiment.id,
        experiment_name=experiment.name,
        status=experiment.status.value,
        report_generated_at=datetime.now(timezone.utc),
        total_participants=total_impressions(stats),
        variant_data=stats,
        significance=verdict,
        sample_size_reached=sample_size_reached,
    )
