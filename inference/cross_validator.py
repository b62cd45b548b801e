"""
Cross-Validator for resolved measurements.

Secondary measurements are used to flag problems with the primary one, never
to blend with it. The primary measurement is annotated and returned as-is.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Sequence

from core.measurement import manual_placeholder
from core.models import (
    ConfidenceLevel,
    MeasurementResult,
    MeasurementSource,
    OverallValidation,
    ValidationCheck,
    ValidationResult,
    ValidationStatus,
)
from core.scoring import calculate_source_agreement

log = logging.getLogger("inference.cross_validator")

AGREES_THRESHOLD = 5.0
VARIANCE_THRESHOLD = 15.0

# Reliability of each source (higher = more reliable)
SOURCE_WEIGHTS = {
    MeasurementSource.LIDAR: 0.98,
    MeasurementSource.SOLAR: 0.90,
    MeasurementSource.MANUAL: 0.85,
    MeasurementSource.OSM: 0.60,
    MeasurementSource.FOOTPRINT_ESTIMATE: 0.50,
}

RECOMMENDATIONS = {
    "gaf-calibrated": "Measurements calibrated against historical GAF report. High accuracy expected.",
    "gaf-level": "High accuracy measurement from multiple agreeing sources or LiDAR data.",
    "high-multi": "Measurements from multiple sources with good agreement. Suitable for quoting.",
    "high-single": "Single high-quality source. Consider uploading a GAF report for verification.",
    "moderate-discrepancy": "Some discrepancy between sources. Manual verification recommended before final quote.",
    "moderate": "Moderate confidence in measurements. Consider site visit for verification.",
    "low": "Low confidence in measurements. Manual roof measurement or GAF report upload strongly recommended.",
    "empty": "Unable to obtain measurements. Manual tracing or site visit required.",
}


@dataclass
class SourceMeasurement:
    source: MeasurementSource
    measurement: MeasurementResult
    weight: float
    variance_from_final: float


@dataclass
class CrossValidationResult:
    final_measurement: MeasurementResult
    sources: List[SourceMeasurement] = field(default_factory=list)
    agreement_score: float = 0.0
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW
    discrepancies: List[str] = field(default_factory=list)
    recommendation: str = ""


def variance_percent(value: float, reference: float) -> float:
    """Signed percent difference of value from reference; 0 for a zero reference."""
    if reference == 0:
        return 0.0
    return (value - reference) / reference * 100


def classify_variance(variance: float) -> ValidationStatus:
    magnitude = abs(variance)
    if magnitude <= AGREES_THRESHOLD:
        return ValidationStatus.AGREES
    if magnitude <= VARIANCE_THRESHOLD:
        return ValidationStatus.MINOR_VARIANCE
    return ValidationStatus.SIGNIFICANT_VARIANCE


def validate(primary: MeasurementResult, secondaries: Sequence[MeasurementResult]) -> ValidationResult:
    """
    Check a primary measurement against secondary sources.

    Args:
        primary: The resolved measurement
        secondaries: Measurements from other sources

    Returns:
        ValidationResult wrapping the unchanged primary measurement
    """
    checks: List[ValidationCheck] = []
    warnings: List[str] = []

    for secondary in secondaries:
        variance = variance_percent(secondary.adjusted_area_sqft, primary.adjusted_area_sqft)
        status = classify_variance(variance)
        if status == ValidationStatus.SIGNIFICANT_VARIANCE:
            warnings.append(
                f"{secondary.source.value} differs by {abs(variance):.1f}% "
                f"from primary source ({primary.source.value})"
            )
        checks.append(ValidationCheck(
            source=secondary.source.value,
            measurement=secondary.adjusted_area_sqft,
            variance_from_primary=variance,
            status=status,
        ))

    if not checks:
        overall = OverallValidation.UNVALIDATED
    elif warnings:
        overall = OverallValidation.DISCREPANCY_DETECTED
    else:
        overall = OverallValidation.VALIDATED

    if warnings:
        log.info(f"Cross-validation flagged {len(warnings)} of {len(checks)} secondary sources")

    return ValidationResult(
        primary_measurement=primary,
        checks=checks,
        warnings=warnings,
        overall_validation=overall,
    )


# ═══════════════════════════════════════════════════════════════════════════
# MULTI-MEASUREMENT REPORT
# ═══════════════════════════════════════════════════════════════════════════
def _identify_discrepancies(sources: Sequence[SourceMeasurement]) -> List[str]:
    discrepancies = []
    for entry in sources:
        if abs(entry.variance_from_final) > VARIANCE_THRESHOLD:
            direction = "higher" if entry.variance_from_final > 0 else "lower"
            discrepancies.append(
                f"{entry.source.value} measurement is "
                f"{abs(entry.variance_from_final):.1f}% {direction} than average"
            )
    return discrepancies


def _confidence_level(
    measurements: Sequence[MeasurementResult],
    agreement: float,
    has_gaf_calibration: bool,
) -> ConfidenceLevel:
    # GAF-level: a GAF report, LiDAR, or two sources within 5%
    if has_gaf_calibration:
        return ConfidenceLevel.GAF_LEVEL
    if any(m.source == MeasurementSource.LIDAR for m in measurements):
        return ConfidenceLevel.GAF_LEVEL
    if len(measurements) >= 2 and agreement >= 95:
        return ConfidenceLevel.GAF_LEVEL

    if agreement >= 85 or any(m.confidence >= 85 for m in measurements):
        return ConfidenceLevel.HIGH
    if agreement >= 70 or any(m.confidence >= 70 for m in measurements):
        return ConfidenceLevel.MODERATE
    return ConfidenceLevel.LOW


def _recommendation(
    level: ConfidenceLevel,
    discrepancies: Sequence[str],
    source_count: int,
    has_gaf_calibration: bool,
) -> str:
    if level == ConfidenceLevel.GAF_LEVEL:
        return RECOMMENDATIONS["gaf-calibrated" if has_gaf_calibration else "gaf-level"]
    if level == ConfidenceLevel.HIGH:
        return RECOMMENDATIONS["high-multi" if source_count >= 2 else "high-single"]
    if level == ConfidenceLevel.MODERATE:
        return RECOMMENDATIONS["moderate-discrepancy" if discrepancies else "moderate"]
    return RECOMMENDATIONS["low"]


def cross_validate_measurements(
    measurements: Sequence[MeasurementResult],
    has_gaf_calibration: bool = False,
) -> CrossValidationResult:
    """
    Summarize agreement across measurements ordered best tier first.

    The first measurement is always the final one. The others only feed the
    agreement score, discrepancy list and recommendation.
    """
    if not measurements:
        return CrossValidationResult(
            final_measurement=replace(manual_placeholder(), warning="No measurements available"),
            discrepancies=["No measurement sources available"],
            recommendation=RECOMMENDATIONS["empty"],
        )

    primary = measurements[0]

    if len(measurements) == 1:
        if has_gaf_calibration or primary.source == MeasurementSource.LIDAR:
            level = ConfidenceLevel.GAF_LEVEL
        elif primary.confidence >= 80:
            level = ConfidenceLevel.HIGH
        elif primary.confidence < 60:
            level = ConfidenceLevel.LOW
        else:
            level = ConfidenceLevel.MODERATE
        return CrossValidationResult(
            final_measurement=primary,
            sources=[SourceMeasurement(primary.source, primary, SOURCE_WEIGHTS[primary.source], 0.0)],
            agreement_score=100.0,
            confidence_level=level,
            recommendation=_recommendation(level, [], 1, has_gaf_calibration),
        )

    sources = [
        SourceMeasurement(
            source=m.source,
            measurement=m,
            weight=SOURCE_WEIGHTS[m.source],
            variance_from_final=variance_percent(m.adjusted_area_sqft, primary.adjusted_area_sqft),
        )
        for m in measurements
    ]
    agreement = calculate_source_agreement([m.adjusted_area_sqft for m in measurements])
    discrepancies = _identify_discrepancies(sources)
    level = _confidence_level(measurements, agreement, has_gaf_calibration)

    return CrossValidationResult(
        final_measurement=primary,
        sources=sources,
        agreement_score=agreement,
        confidence_level=level,
        discrepancies=discrepancies,
        recommendation=_recommendation(level, discrepancies, len(measurements), has_gaf_calibration),
    )


def meets_gaf_level_criteria(
    measurements: Sequence[MeasurementResult],
    has_gaf_calibration: bool = False,
) -> Dict[str, object]:
    """
    Returns:
        {"meets": bool, "reason": str}
    """
    if has_gaf_calibration:
        return {"meets": True, "reason": "GAF report available for this address"}

    if any(m.source == MeasurementSource.LIDAR for m in measurements):
        return {"meets": True, "reason": "LiDAR measurement data available"}

    if len(measurements) >= 2:
        agreement = calculate_source_agreement([m.adjusted_area_sqft for m in measurements])
        if agreement >= 95:
            return {"meets": True, "reason": f"{len(measurements)} sources agree within 5%"}

    return {
        "meets": False,
        "reason": "Insufficient data for GAF-level confidence. Upload a GAF report or enable additional sources.",
    }
