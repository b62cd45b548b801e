"""
Source Comparator for footprint agreement between imagery sources.

Compares building footprint areas pairwise and across a whole set. The
consensus area is reported alongside the measurement for review only; it is
never written back into a MeasurementResult.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Sequence, Tuple

import numpy as np

from core.models import BuildingFootprint

log = logging.getLogger("inference.source_comparator")

STRONG_VARIANCE = 5.0
MODERATE_VARIANCE = 15.0
WEAK_VARIANCE = 25.0


class AgreementLevel(Enum):
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    CONFLICT = "conflict"


AGREEMENT_BONUS = {
    AgreementLevel.STRONG: 10,
    AgreementLevel.MODERATE: 5,
    AgreementLevel.WEAK: 0,
    AgreementLevel.CONFLICT: -15,
}


@dataclass
class FootprintComparison:
    source1: str
    source2: str
    area_difference_sqft: float
    variance_percent: float
    agreement: AgreementLevel


@dataclass
class MultiSourceConsensus:
    consensus_area_sqft: float
    confidence_score: float
    agreement_level: AgreementLevel
    discrepancies: List[str] = field(default_factory=list)


def get_agreement_level(variance_percent: float) -> AgreementLevel:
    """Inclusive thresholds: 5% is still strong, 15% still moderate."""
    if variance_percent <= STRONG_VARIANCE:
        return AgreementLevel.STRONG
    if variance_percent <= MODERATE_VARIANCE:
        return AgreementLevel.MODERATE
    if variance_percent <= WEAK_VARIANCE:
        return AgreementLevel.WEAK
    return AgreementLevel.CONFLICT


def compare_footprints(
    footprint1: BuildingFootprint,
    footprint2: BuildingFootprint,
    source1: str = "source1",
    source2: str = "source2",
) -> FootprintComparison:
    """Variance is relative to the larger of the two areas."""
    difference = abs(footprint1.area_sqft - footprint2.area_sqft)
    reference = max(footprint1.area_sqft, footprint2.area_sqft)
    variance = difference / reference * 100 if reference > 0 else 0.0

    return FootprintComparison(
        source1=source1,
        source2=source2,
        area_difference_sqft=difference,
        variance_percent=variance,
        agreement=get_agreement_level(variance),
    )


def calculate_all_pairwise_comparisons(
    footprints: Sequence[Tuple[str, BuildingFootprint]],
) -> List[FootprintComparison]:
    comparisons = []
    for i in range(len(footprints)):
        for j in range(i + 1, len(footprints)):
            source_a, footprint_a = footprints[i]
            source_b, footprint_b = footprints[j]
            comparisons.append(compare_footprints(footprint_a, footprint_b, source_a, source_b))
    return comparisons


def get_agreement_summary(comparisons: Sequence[FootprintComparison]) -> Dict[str, float]:
    counts = {level.value: 0 for level in AgreementLevel}
    for comparison in comparisons:
        counts[comparison.agreement.value] += 1

    total = len(comparisons)
    return {
        "total": total,
        **counts,
        "strong_percent": counts["strong"] / total * 100 if total else 0.0,
        "agreement_percent": (counts["strong"] + counts["moderate"]) / total * 100 if total else 0.0,
    }


def calculate_overall_variance(areas: Sequence[float]) -> float:
    """
    Coefficient of variation (population std / mean) as a percentage.

    Returns 0 for fewer than two areas or a zero mean.
    """
    if len(areas) < 2:
        return 0.0

    values = np.asarray(areas, dtype=float)
    mean = values.mean()
    if mean == 0:
        return 0.0
    return float(values.std() / mean * 100)


def identify_outlier_sources(footprints: Sequence[Tuple[str, float]]) -> List[str]:
    """
    Sources whose area falls outside the 1.5 * IQR fences.

    Args:
        footprints: (source name, area sq ft) pairs

    Returns:
        Outlier source names in input order (empty for fewer than 3 sources)
    """
    if len(footprints) < 3:
        return []

    ordered = sorted(area for _, area in footprints)
    q1 = ordered[int(len(ordered) * 0.25)]
    q3 = ordered[int(len(ordered) * 0.75)]
    iqr = q3 - q1
    lower = q1 - 1.5 * iqr
    upper = q3 + 1.5 * iqr

    outliers = [source for source, area in footprints if area < lower or area > upper]
    if outliers:
        log.debug(f"Outlier sources outside [{lower:.0f}, {upper:.0f}] sq ft: {outliers}")
    return outliers


def calculate_multi_source_consensus(
    footprints: Sequence[Tuple[str, BuildingFootprint]],
) -> MultiSourceConsensus:
    """Confidence-weighted consensus area with an agreement-adjusted confidence."""
    if not footprints:
        return MultiSourceConsensus(0.0, 0.0, AgreementLevel.CONFLICT, ["No footprints provided"])

    if len(footprints) == 1:
        _, only = footprints[0]
        return MultiSourceConsensus(
            only.area_sqft,
            only.confidence,
            AgreementLevel.STRONG,
            ["Single source - no cross-validation possible"],
        )

    areas = np.array([fp.area_sqft for _, fp in footprints], dtype=float)
    confidences = np.array([fp.confidence for _, fp in footprints], dtype=float)
    weights = confidences / 100
    consensus = float(np.sum(areas * weights) / np.sum(weights)) if np.sum(weights) > 0 else 0.0

    if consensus > 0:
        variances = np.abs(areas - consensus) / consensus * 100
    else:
        variances = np.zeros(len(areas))

    level = get_agreement_level(float(variances.mean()))
    confidence = min(100.0, max(0.0, float(confidences.mean()) + AGREEMENT_BONUS[level]))

    discrepancies = []
    for (source, footprint), variance in zip(footprints, variances):
        if variance > MODERATE_VARIANCE:
            direction = "larger" if footprint.area_sqft > consensus else "smaller"
            discrepancies.append(f"{source} is {variance:.1f}% {direction} than consensus")

    return MultiSourceConsensus(consensus, confidence, level, discrepancies)
