"""
Accuracy Detection for resolved measurements.

Flags measurements that are likely to be wrong before they are quoted:
low confidence, incomplete or irregular outlines, disagreeing sources,
default pitch, very small buildings, and regions with known footprint gaps.
The result decides whether to auto-trace, lean on the regional calibration,
or send the roof to manual review.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from core.models import GeometryAnalysis, MeasurementResult, MeasurementSource
from core.pitch import DEFAULT_PITCH_DEGREES

log = logging.getLogger("inference.accuracy_detection")

# Rural New England zips with sparse or outdated OSM outlines
DEFAULT_PROBLEMATIC_REGIONS = frozenset({
    "01005", "01007", "01008", "01010", "01011", "01012",
    "01050", "01053", "01054", "01056", "01057", "01070", "01071",
    "05401", "05602", "05701",
    "03301", "03431", "03561",
    "04101", "04401", "04501",
})

# region key -> typical under-measurement percent
DEFAULT_UNDER_MEASUREMENT = {
    "01008": 20.4,
}

SIGNIFICANT_UNDER_MEASUREMENT = 10.0
AUTO_TRACE_BASE_IMPROVEMENT = 15
AUTO_TRACE_REGION_BONUS = 5
AUTO_TRACE_MAX_CONFIDENCE = 95

FOOTPRINT_ISSUES = ("incomplete-footprint", "low-vertex-count", "source-discrepancy")


class CorrectionAction(Enum):
    NONE = "none"
    AUTO_TRACE = "auto-trace"
    MANUAL_REVIEW = "manual-review"
    USE_SELF_LEARNING = "use-self-learning"


@dataclass
class AccuracyDetectionConfig:
    confidence_threshold: float = 80.0
    vertex_count_threshold: int = 4
    source_discrepancy_threshold: float = 15.0  # percent
    min_building_area_sqft: float = 500.0
    min_compactness_ratio: float = 0.03
    max_segments: int = 8
    region_key_length: int = 5


@dataclass
class AccuracyIssue:
    type: str  # low-confidence, low-vertex-count, source-discrepancy, problematic-region, ...
    severity: str
    description: str
    impact_on_accuracy: float


@dataclass
class AccuracyDetectionResult:
    needs_correction: bool
    recommended_action: CorrectionAction
    overall_score: float  # 0-100, higher is more accurate
    reasons: List[str] = field(default_factory=list)
    issues: List[AccuracyIssue] = field(default_factory=list)


def source_discrepancy(primary: MeasurementResult, secondaries: Sequence[MeasurementResult]) -> float:
    """Largest percent difference of a secondary from the primary area."""
    if not secondaries or primary.adjusted_area_sqft == 0:
        return 0.0
    return max(
        abs((s.adjusted_area_sqft - primary.adjusted_area_sqft) / primary.adjusted_area_sqft * 100)
        for s in secondaries
    )


def estimate_auto_trace_improvement(current_confidence: float, problematic_region: bool = False) -> Dict[str, float]:
    """
    Expected confidence after auto-tracing.

    Returns:
        {"estimated_confidence", "improvement_percent"}
    """
    bonus = AUTO_TRACE_REGION_BONUS if problematic_region else 0
    improvement = min(AUTO_TRACE_BASE_IMPROVEMENT + bonus, 100 - current_confidence)
    estimated = min(AUTO_TRACE_MAX_CONFIDENCE, current_confidence + improvement)
    return {
        "estimated_confidence": estimated,
        "improvement_percent": estimated - current_confidence,
    }


class AccuracyDetector:
    """
    Usage:
        detector = AccuracyDetector()
        result = detector.detect(measurement, analyze_geometry(ring), secondaries, "01008")
        if result.recommended_action == CorrectionAction.AUTO_TRACE:
            ...

    The region lists start from the built-in defaults and grow as the
    calibrator reports under-measuring regions.
    """

    def __init__(
        self,
        config: Optional[AccuracyDetectionConfig] = None,
        problematic_regions: Optional[Iterable[str]] = None,
        under_measurement: Optional[Dict[str, float]] = None,
    ):
        self.config = config or AccuracyDetectionConfig()
        self._problematic = set(DEFAULT_PROBLEMATIC_REGIONS if problematic_regions is None else problematic_regions)
        self._under_measurement = dict(DEFAULT_UNDER_MEASUREMENT if under_measurement is None else under_measurement)
        self._lock = threading.Lock()

    def _key(self, region_key: str) -> str:
        return str(region_key).strip()[:self.config.region_key_length]

    # ═══════════════════════════════════════════════════════════════════════
    # REGION TRACKING
    # ═══════════════════════════════════════════════════════════════════════
    def is_problematic_region(self, region_key: str) -> bool:
        with self._lock:
            return self._key(region_key) in self._problematic

    def known_under_measurement(self, region_key: str) -> Optional[float]:
        with self._lock:
            return self._under_measurement.get(self._key(region_key))

    def add_problematic_region(self, region_key: str) -> None:
        with self._lock:
            self._problematic.add(self._key(region_key))

    def update_under_measurement(self, region_key: str, percent: float) -> None:
        """Record a region's typical under-measurement; large ones become problematic."""
        key = self._key(region_key)
        with self._lock:
            self._under_measurement[key] = percent
            if percent > SIGNIFICANT_UNDER_MEASUREMENT:
                self._problematic.add(key)
        log.info(f"Region {key} under-measures by {percent:.1f}%")

    # ═══════════════════════════════════════════════════════════════════════
    # DETECTION
    # ═══════════════════════════════════════════════════════════════════════
    def should_trigger_auto_trace(self, measurement: MeasurementResult, region_key: Optional[str] = None) -> bool:
        """Quick check without the full analysis."""
        if measurement.confidence < self.config.confidence_threshold:
            return True
        if measurement.source == MeasurementSource.OSM and measurement.confidence < 85:
            return True
        return bool(region_key) and self.is_problematic_region(region_key)

    def detect(
        self,
        measurement: MeasurementResult,
        geometry: Optional[GeometryAnalysis] = None,
        secondaries: Optional[Sequence[MeasurementResult]] = None,
        region_key: Optional[str] = None,
    ) -> AccuracyDetectionResult:
        """
        Check a measurement for likely accuracy problems.

        Args:
            measurement: The resolved measurement
            geometry: Analysis of the outline it came from, if known
            secondaries: Measurements from other sources
            region_key: Zip code or other region key

        Returns:
            AccuracyDetectionResult with issues, score and recommended action
        """
        cfg = self.config
        issues: List[AccuracyIssue] = []
        reasons: List[str] = []

        if measurement.confidence < cfg.confidence_threshold:
            if measurement.confidence < 60:
                severity = "high"
            elif measurement.confidence < 70:
                severity = "medium"
            else:
                severity = "low"
            issues.append(AccuracyIssue(
                "low-confidence", severity,
                f"Confidence score {measurement.confidence:.0f}% is below threshold of "
                f"{cfg.confidence_threshold:.0f}%",
                cfg.confidence_threshold - measurement.confidence,
            ))
            reasons.append(f"Low confidence: {measurement.confidence:.0f}%")

        if geometry is not None and 0 < geometry.vertex_count < cfg.vertex_count_threshold:
            issues.append(AccuracyIssue(
                "low-vertex-count", "high",
                f"Building footprint has only {geometry.vertex_count} vertices "
                f"(minimum: {cfg.vertex_count_threshold})",
                15,
            ))
            reasons.append(f"Incomplete footprint: only {geometry.vertex_count} vertices")

        discrepancy = source_discrepancy(measurement, secondaries or [])
        if discrepancy > cfg.source_discrepancy_threshold:
            issues.append(AccuracyIssue(
                "source-discrepancy", "high" if discrepancy > 25 else "medium",
                f"Source measurements differ by {discrepancy:.1f}% "
                f"(threshold: {cfg.source_discrepancy_threshold:.0f}%)",
                discrepancy,
            ))
            reasons.append(f"Source discrepancy: {discrepancy:.1f}%")

        if region_key and self.is_problematic_region(region_key):
            key = self._key(region_key)
            issues.append(AccuracyIssue(
                "problematic-region", "medium",
                f"Region {key} has known footprint data quality issues",
                10,
            ))
            reasons.append(f"Problematic region: {key}")

        # 0 or the 4:12 default means no real pitch data reached the OSM tier
        if measurement.source == MeasurementSource.OSM and measurement.pitch_degrees in (0, DEFAULT_PITCH_DEGREES):
            issues.append(AccuracyIssue(
                "missing-pitch-data", "low",
                "Using default pitch estimate instead of actual data",
                5,
            ))
            reasons.append("Using estimated pitch data")

        if geometry is not None and geometry.compactness_ratio < cfg.min_compactness_ratio:
            issues.append(AccuracyIssue(
                "incomplete-footprint", "medium",
                f"Footprint shape is irregular (compactness ratio: {geometry.compactness_ratio:.4f})",
                10,
            ))
            reasons.append("Irregular footprint shape")

        if measurement.footprint_area_sqft < cfg.min_building_area_sqft:
            issues.append(AccuracyIssue(
                "small-building", "low",
                f"Building is very small ({measurement.footprint_area_sqft:.0f} sq ft)",
                5,
            ))
            reasons.append("Small building size may affect accuracy")

        if geometry is not None and geometry.estimated_segments > cfg.max_segments:
            issues.append(AccuracyIssue(
                "complex-geometry", "medium",
                f"Complex roof geometry with {geometry.estimated_segments} estimated segments",
                8,
            ))
            reasons.append("Complex roof geometry")

        overall = max(0.0, 100.0 - sum(i.impact_on_accuracy for i in issues))
        needs_correction = (
            any(i.severity == "high" for i in issues)
            or overall < 70
            or len(issues) >= 3
        )
        action = self._recommended_action(issues, overall, region_key)

        if issues:
            log.info(f"Detected {len(issues)} accuracy issues (score {overall:.0f}, action {action.value})")
        return AccuracyDetectionResult(
            needs_correction=needs_correction,
            recommended_action=action,
            overall_score=overall,
            reasons=reasons,
            issues=issues,
        )

    def _recommended_action(
        self,
        issues: List[AccuracyIssue],
        overall_score: float,
        region_key: Optional[str],
    ) -> CorrectionAction:
        if overall_score < 50:
            return CorrectionAction.MANUAL_REVIEW
        if region_key and self.known_under_measurement(region_key) is not None:
            return CorrectionAction.USE_SELF_LEARNING
        if any(i.type in FOOTPRINT_ISSUES for i in issues):
            return CorrectionAction.AUTO_TRACE
        if any(i.severity == "high" for i in issues):
            return CorrectionAction.AUTO_TRACE
        if any(i.severity == "medium" for i in issues):
            return CorrectionAction.USE_SELF_LEARNING
        return CorrectionAction.NONE
