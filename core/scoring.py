"""
Confidence Scoring Module

Turns situational factors (imagery quality and age, roof complexity, pitch,
source agreement, calibration data) into a 0-100 confidence score with a
per-factor explanation.

Scoring is additive from a base of 70. Each factor's delta is clamped into
[0, 100] as it is applied, so the order below is part of the contract.
"""

import logging
from datetime import date, datetime
from typing import List, Optional, Sequence

from core.models import (
    ConfidenceFactors,
    ConfidenceLevel,
    ConfidenceResult,
    FactorImpact,
    ImageryQuality,
)

log = logging.getLogger(__name__)

BASE_SCORE = 70.0

LEVEL_LABELS = {
    ConfidenceLevel.GAF_LEVEL: "GAF-Level Confidence",
    ConfidenceLevel.HIGH: "High Confidence",
    ConfidenceLevel.MODERATE: "Moderate Confidence",
    ConfidenceLevel.LOW: "Low Confidence - Manual Verification Recommended",
}


# ═══════════════════════════════════════════════════════════════════════════
# FACTOR TABLES
# ═══════════════════════════════════════════════════════════════════════════
QUALITY_IMPACT = {
    ImageryQuality.HIGH: (10, "High quality satellite imagery"),
    ImageryQuality.MEDIUM: (0, "Medium quality satellite imagery"),
    ImageryQuality.LOW: (-15, "Low quality satellite imagery reduces accuracy"),
    ImageryQuality.UNKNOWN: (-10, "Unknown imagery quality"),
}

# (max age in years, impact, description)
FRESHNESS_STEPS = [
    (1, 5, "Recent imagery (< 1 year old)"),
    (2, 0, "Moderately recent imagery (1-2 years old)"),
    (3, -5, "Older imagery (2-3 years old)"),
]
FRESHNESS_OUTDATED = (-10, "Outdated imagery (> 3 years old)")

# (max segments, impact, description)
COMPLEXITY_STEPS = [
    (4, 5, "Simple roof structure (≤4 segments)"),
    (8, 0, "Moderate roof complexity (5-8 segments)"),
    (12, -5, "Complex roof structure (9-12 segments)"),
]
COMPLEXITY_VERY = (-10, "Very complex roof structure (>12 segments)")

# (max degrees, impact, description)
PITCH_STEPS = [
    (5, 5, "Flat or low-slope roof (easy to measure)"),
    (33.7, 0, "Standard pitch range"),
    (45, -5, "Steep pitch may affect measurement accuracy"),
]
PITCH_VERY_STEEP = (-15, "Very steep pitch significantly reduces accuracy")

# (min agreement %, impact, within %)
AGREEMENT_STEPS = [
    (95, 15, 5),
    (90, 10, 10),
    (80, 5, 20),
]
AGREEMENT_POOR = (-5, "Significant discrepancy between sources")


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def _to_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def get_confidence_level(score: float) -> ConfidenceLevel:
    if score >= 90:
        return ConfidenceLevel.GAF_LEVEL
    if score >= 75:
        return ConfidenceLevel.HIGH
    if score >= 60:
        return ConfidenceLevel.MODERATE
    return ConfidenceLevel.LOW


class ConfidenceScorer:
    """
    Deterministic confidence scorer.

    Usage:
        scorer = ConfidenceScorer()
        result = scorer.score(ConfidenceFactors(imagery_quality=ImageryQuality.HIGH))
        print(scorer.explain_score(result))
    """

    def score(self, factors: ConfidenceFactors, as_of: Optional[date] = None) -> ConfidenceResult:
        """
        Score a set of factors.

        Args:
            factors: Situational inputs; unset fields are skipped
            as_of: Reference date for imagery age. Defaults to today, so pass
                it whenever imagery_date is set and the result must be
                reproducible.

        Returns:
            ConfidenceResult with rounded score, level, label and breakdown
        """
        breakdown: List[FactorImpact] = []
        total = BASE_SCORE

        def apply(name: str, impact: float, description: str) -> None:
            nonlocal total
            total = _clamp(total + impact)
            breakdown.append(FactorImpact(name=name, impact=impact, description=description))

        if factors.has_gaf_calibration:
            apply("GAF Calibration", 25, "Historical GAF report provides calibration data")

        if factors.has_lidar_data:
            apply("LiDAR Data", 20, "LiDAR-based measurements available")

        if factors.imagery_quality is not None:
            impact, description = QUALITY_IMPACT[factors.imagery_quality]
            apply("Imagery Quality", impact, description)

        if factors.imagery_date is not None:
            reference = _to_date(as_of) if as_of is not None else date.today()
            age_years = (reference - _to_date(factors.imagery_date)).days / 365.25
            impact, description = FRESHNESS_OUTDATED
            for max_years, step_impact, step_description in FRESHNESS_STEPS:
                if age_years <= max_years:
                    impact, description = step_impact, step_description
                    break
            apply("Imagery Freshness", impact, description)

        if factors.segment_count is not None:
            impact, description = COMPLEXITY_VERY
            for max_segments, step_impact, step_description in COMPLEXITY_STEPS:
                if factors.segment_count <= max_segments:
                    impact, description = step_impact, step_description
                    break
            apply("Roof Complexity", impact, description)

        if factors.pitch_degrees is not None:
            impact, description = PITCH_VERY_STEEP
            for max_degrees, step_impact, step_description in PITCH_STEPS:
                if factors.pitch_degrees <= max_degrees:
                    impact, description = step_impact, step_description
                    break
            apply("Pitch Analysis", impact, description)

        if factors.source_count is not None and factors.source_count > 1:
            agreement = factors.source_agreement_percent or 0.0
            impact, description = AGREEMENT_POOR
            for min_agreement, step_impact, within in AGREEMENT_STEPS:
                if agreement >= min_agreement:
                    impact = step_impact
                    description = f"{factors.source_count} sources agree within {within}%"
                    break
            apply("Source Agreement", impact, description)

        level = get_confidence_level(total)
        return ConfidenceResult(
            score=round(total),
            level=level,
            label=LEVEL_LABELS[level],
            factors=breakdown,
        )

    def explain_score(self, result: ConfidenceResult) -> str:
        """Human-readable explanation of a confidence result."""
        lines = [f"Score: {result.score}/100 ({result.label})"]
        lines.append(f"  Base: {BASE_SCORE:.0f}")
        for factor in result.factors:
            sign = "+" if factor.impact >= 0 else ""
            lines.append(f"  {factor.name}: {sign}{factor.impact:g} ({factor.description})")
        return "\n".join(lines)


def calculate_source_agreement(measurements: Sequence[float]) -> float:
    """
    Agreement between measurements as 0-100.

    100 minus the largest percent deviation from the mean. A single value
    agrees with itself; no values (or a zero mean) give 0.
    """
    if not measurements:
        return 0.0
    if len(measurements) == 1:
        return 100.0

    average = sum(measurements) / len(measurements)
    if average == 0:
        return 0.0

    max_variance = max(abs((m - average) / average) * 100 for m in measurements)
    return max(0.0, 100.0 - max_variance)


# Singleton
_scorer: Optional[ConfidenceScorer] = None


def get_scorer() -> ConfidenceScorer:
    """Get singleton scorer (it holds no state)."""
    global _scorer
    if _scorer is None:
        _scorer = ConfidenceScorer()
    return _scorer


def score(factors: ConfidenceFactors, as_of: Optional[date] = None) -> ConfidenceResult:
    """Score factors with the shared scorer."""
    return get_scorer().score(factors, as_of=as_of)


def manual_tracing_score() -> ConfidenceResult:
    """Result for the manual-tracing placeholder: nothing was measured."""
    return ConfidenceResult(
        score=0,
        level=ConfidenceLevel.LOW,
        label=LEVEL_LABELS[ConfidenceLevel.LOW],
        factors=[FactorImpact(
            name="Manual Tracing Required",
            impact=-BASE_SCORE,
            description="No automated source could measure this roof",
        )],
    )


def explain_score(result: ConfidenceResult) -> str:
    return get_scorer().explain_score(result)
