"""
Report Assembler

Combines the resolver, cross-validation, regional calibration, confidence
scoring and imagery consensus into the result returned to callers.
"""

import logging
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import date
from typing import Dict, List, Optional

from core.models import (
    ConfidenceFactors,
    ConfidenceResult,
    MeasurementResult,
    MeasurementSource,
    MultiSourceImagerySet,
    TieredMeasurementResult,
    ValidationResult,
    _plain,
)
from core.resolver import MeasurementOptions, TieredResolver, get_tier_accuracy
from core.scoring import calculate_source_agreement, explain_score, manual_tracing_score, score
from inference.accuracy_detection import AccuracyDetectionResult, AccuracyDetector
from inference.calibrator import SelfLearningCalibrator
from inference.cross_validator import validate
from inference.seasonal import SeasonalAnalyzer, SeasonalValidationResult
from loaders.imagery import ImagerySourceManager

log = logging.getLogger(__name__)


@dataclass
class MeasurementReport:
    tiered: TieredMeasurementResult
    measurement: MeasurementResult  # after regional correction, if any
    validation: ValidationResult
    confidence: ConfidenceResult
    accuracy_range: str
    correction_applied: bool = False
    correction_details: Dict = field(default_factory=dict)
    accuracy_prediction: Optional[Dict] = None
    imagery: Optional[MultiSourceImagerySet] = None
    seasonal: Optional[SeasonalValidationResult] = None
    accuracy: Optional[AccuracyDetectionResult] = None

    def explain(self) -> str:
        return explain_score(self.confidence)

    def to_dict(self) -> Dict:
        result = {}
        for name, value in self.__dict__.items():
            result[name] = _plain(asdict(value)) if is_dataclass(value) else _plain(value)
        return result


class ReportAssembler:
    """
    Usage:
        assembler = ReportAssembler(TieredResolver.from_environment(), calibrator=calibrator)
        report = assembler.assemble(42.3601, -71.0589, MeasurementOptions(region_key="02134"))
        print(report.measurement.adjusted_area_sqft, report.confidence.label)

    Calibrator, imagery manager and seasonal analyzer are optional. The
    accuracy detector defaults to one with the built-in region lists.
    """

    def __init__(
        self,
        resolver: TieredResolver,
        calibrator: Optional[SelfLearningCalibrator] = None,
        imagery: Optional[ImagerySourceManager] = None,
        seasonal: Optional[SeasonalAnalyzer] = None,
        accuracy: Optional[AccuracyDetector] = None,
    ):
        self.resolver = resolver
        self.calibrator = calibrator
        self.imagery = imagery
        self.seasonal = seasonal
        self.accuracy = accuracy or AccuracyDetector()

    def assemble(
        self,
        lat: float,
        lng: float,
        options: Optional[MeasurementOptions] = None,
        as_of: Optional[date] = None,
    ) -> MeasurementReport:
        options = options or MeasurementOptions()
        tiered = self.resolver.resolve(lat, lng, options)
        primary = tiered.measurement

        secondaries: List[MeasurementResult] = []
        if not primary.is_degraded:
            secondaries = self.resolver.secondary_measurements(lat, lng, primary, options)
        validation = validate(primary, secondaries)

        accuracy = None
        if not primary.is_degraded:
            accuracy = self.accuracy.detect(primary, secondaries=secondaries, region_key=options.region_key)

        measurement = primary
        applied = False
        details: Dict = {}
        prediction = None
        if self.calibrator is not None and options.region_key:
            if not primary.is_degraded:
                measurement, applied, details = self.calibrator.apply(primary, options.region_key)
                if applied and details["correction_factor"] > 1:
                    self.accuracy.update_under_measurement(
                        options.region_key, (details["correction_factor"] - 1) * 100
                    )
            prediction = self.calibrator.predict_accuracy(options.region_key, measurement.confidence)

        imagery = None
        if self.imagery is not None:
            imagery = self.imagery.fetch_all(lat, lng, deadline=options.deadline)

        seasonal = None
        if self.seasonal is not None:
            seasonal = self.seasonal.validate(lat, lng, deadline=options.deadline)

        if measurement.is_degraded:
            confidence = manual_tracing_score()
        else:
            confidence = score(self._factors(measurement, secondaries, applied, imagery), as_of=as_of)
        log.info(
            f"Report for ({lat:.5f}, {lng:.5f}): tier {tiered.tier_used}, "
            f"{measurement.adjusted_area_sqft:.0f} sq ft, {confidence.score}/100 "
            f"({validation.overall_validation.value})"
        )

        return MeasurementReport(
            tiered=tiered,
            measurement=measurement,
            validation=validation,
            confidence=confidence,
            accuracy_range=get_tier_accuracy(tiered.tier_used),
            correction_applied=applied,
            correction_details=details,
            accuracy_prediction=prediction,
            imagery=imagery,
            seasonal=seasonal,
            accuracy=accuracy,
        )

    @staticmethod
    def _factors(
        measurement: MeasurementResult,
        secondaries: List[MeasurementResult],
        calibrated: bool,
        imagery: Optional[MultiSourceImagerySet],
    ) -> ConfidenceFactors:
        imagery_date = measurement.imagery_date
        if imagery_date is None and imagery is not None and imagery.recommended_primary is not None:
            imagery_date = imagery.recommended_primary.capture_date

        areas = [measurement.adjusted_area_sqft] + [s.adjusted_area_sqft for s in secondaries]
        return ConfidenceFactors(
            imagery_quality=measurement.imagery_quality,
            imagery_date=imagery_date,
            segment_count=measurement.segment_count if not measurement.is_degraded else None,
            pitch_degrees=measurement.pitch_degrees if not measurement.is_degraded else None,
            source_count=len(areas),
            source_agreement_percent=calculate_source_agreement(areas),
            has_gaf_calibration=calibrated,
            has_lidar_data=measurement.source == MeasurementSource.LIDAR,
        )
