from typing import Iterable
from models.events import EventRecord, EventType
from models.experiments import VariantDescriptor
from models.results import VariantStats
import logging

logger = logging.getLogger(__name__)


def conversion_rate(impressions: int, conversions: int) -> float:
    """Fraction of impressions that converted, 0.0 when nothing was shown yet."""
    return conversions / impressions if impressions > 0 else 0.0


def aggregate(
    variants: Iterable[VariantDescriptor],
    events: Iterable[EventRecord],
    experiment_id: int | None = None,
) -> dict[int, VariantStats]:
    """
    Reduce raw events into per-variant counts.

    Every declared variant is present in the result, in declared order, even
    without events. Events for other experiments (when `experiment_id` is given),
    for undeclared variants, or of an unrecognized type are ignored.
    """
    counts: dict[int, dict[str, int]] = {}
    names: dict[int, str] = {}
    for variant in variants:
        counts[variant.id] = {EventType.IMPRESSION.value: 0, EventType.CONVERSION.value: 0}
        names[variant.id] = variant.name

    ignored = 0
    for event in events:
        if experiment_id is not None and event.experiment_id != experiment_id:
            continue
        bucket = counts.get(event.variant_id)
        if bucket is None or event.event_type not in bucket:
            ignored += 1
            continue
        bucket[event.event_type] += 1

    if ignored:
        logger.debug("aggregate ignored %d events (unknown variant or type)", ignored)

    stats: dict[int, VariantStats] = {}
    for variant_id, bucket in counts.items():
        impressions = bucket[EventType.IMPRESSION.value]
        conversions = bucket[EventType.CONVERSION.value]
        stats[variant_id] = VariantStats(
            variant_id=variant_id,
            variant_name=names[variant_id],
            impressions=impressions,
            conversions=conversions,
            conversion_rate=conversion_rate(impressions, conversions),
        )
    return stats


def total_impressions(stats: dict[int, VariantStats]) -> int:
    return sum(s.impressions for s in stats.values())


def mean_conversion_rate(stats: dict[int, VariantStats]) -> float:
    """Unweighted mean of the variants' conversion rates."""
    if not stats:
        return 0.0
    return sum(s.conversion_rate for s in stats.values()) / len(stats)
