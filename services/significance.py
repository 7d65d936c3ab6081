"""
Two-proportion significance test between the two best performing variants.

This is the only place the normal CDF approximation lives: the sweep and the
results endpoint both call `evaluate`, so the confidence shown to people is the
same number that drives the lifecycle.
"""
from models.results import SignificanceVerdict, VariantStats
import math

SIGNIFICANCE_CONFIDENCE = 95.0
MAX_CONFIDENCE = 99.9

# Abramowitz & Stegun 26.2.17 coefficients
_P = 0.2316419
_D = 0.3989423
_B1 = 0.3193815
_B2 = -0.3565638
_B3 = 1.781478
_B4 = -1.821256
_B5 = 1.330274


def normal_cdf(x: float) -> float:
    """Standard normal CDF via the rational polynomial approximation."""
    t = 1 / (1 + _P * abs(x))
    d = _D * math.exp(-x * x / 2)
    prob = d * t * (_B1 + t * (_B2 + t * (_B3 + t * (_B4 + t * _B5))))
    return 1 - prob if x > 0 else prob


def two_tailed_confidence(z: float) -> float:
    """Confidence percentage for a z-statistic, clamped to [0, 99.9]. Not rounded."""
    confidence = (1 - 2 * (1 - normal_cdf(abs(z)))) * 100
    return min(MAX_CONFIDENCE, max(0.0, confidence))


def two_proportion_z_test(conversions1: int, n1: int, conversions2: int, n2: int) -> float | None:
    """
    Pooled two-proportion z-statistic, signed as (p1 - p2) / se.
    Returns None when it is undefined (an empty sample or zero standard error).
    """
    if n1 == 0 or n2 == 0:
        return None

    p1 = conversions1 / n1
    p2 = conversions2 / n2
    p_pool = (conversions1 + conversions2) / (n1 + n2)
    se = math.sqrt(p_pool * (1 - p_pool) * (1 / n1 + 1 / n2))
    if se == 0:
        return None

    return (p1 - p2) / se


def rank_variants(stats: dict[int, VariantStats]) -> list[VariantStats]:
    # sorted() is stable: equal rates keep their input order
    return sorted(stats.values(), key=lambda s: s.conversion_rate, reverse=True)


def evaluate(
    stats: dict[int, VariantStats],
    confidence_threshold: float = SIGNIFICANCE_CONFIDENCE,
) -> SignificanceVerdict:
    """
    Compare the best variant against the runner-up.

    Never raises on small or empty samples: those produce a non-significant
    verdict with confidence 0. The minimum sample gate is applied by the caller.
    """
    if len(stats) < 2:
        return SignificanceVerdict()

    winner, runner_up = rank_variants(stats)[:2]
    verdict = SignificanceVerdict(
        winner_variant_id=winner.variant_id,
        runner_up_variant_id=runner_up.variant_id,
    )

    z = two_proportion_z_test(
        winner.conversions, winner.impressions,
        runner_up.conversions, runner_up.impressions,
    )
    if z is None:
        return verdict

    verdict.z_score = z
    confidence = two_tailed_confidence(z)
    # The threshold is applied before rounding, 94.96 is not significant at 95
    verdict.is_significant = confidence >= confidence_threshold
    verdict.confidence_percent = round(confidence, 1)

    p1 = winner.conversion_rate
    p2 = runner_up.conversion_rate
    if p2 != 0:
        verdict.relative_improvement_percent = round((p1 - p2) / p2 * 100, 1)

    return verdict
