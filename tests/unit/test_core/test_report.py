import json
from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from core.geometry import polygon_area
from core.models import (
    SQM_TO_SQFT,
    BuildingFootprint,
    ConfidenceLevel,
    ImageryQuality,
    ImagerySource,
    MeasurementSource,
    OverallValidation,
)
from core.report import ReportAssembler
from core.resolver import MeasurementOptions, TieredResolver
from inference.calibrator import SelfLearningCalibrator
from inference.correction_store import InMemoryCorrectionStore
from loaders.contracts import ImageryProvider, LidarMeasurement
from loaders.imagery import ImagerySourceManager

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
AS_OF = date(2024, 6, 1)

SQUARE = [(42.0, -71.0), (42.0, -70.9999), (42.0001, -70.9999), (42.0001, -71.0)]

LIDAR_PAYLOAD = LidarMeasurement(
    total_area_sqm=200.0,
    total_area_sqft=2152.78,
    adjusted_area_sqft=2400.0,
    pitch_degrees=26.57,
    pitch_multiplier=1.118,
    segment_count=4,
)


class StaticProvider(ImageryProvider):
    def __init__(self, name, result):
        self.name = name
        self.result = result

    def fetch_imagery(self, lat, lng, timeout=None, options=None):
        return self.result


def _osm():
    area_sqm = polygon_area(SQUARE)
    footprint = BuildingFootprint(SQUARE, area_sqm, area_sqm * SQM_TO_SQFT, "osm", 70, {"building": "house"})
    adapter = MagicMock()
    adapter.is_configured = True
    adapter.fetch_footprint.return_value = footprint
    return adapter


def _lidar():
    adapter = MagicMock()
    adapter.is_configured = True
    adapter.fetch_lidar.return_value = LIDAR_PAYLOAD
    return adapter


@pytest.fixture
def calibrator():
    calibrator = SelfLearningCalibrator(InMemoryCorrectionStore(), now_fn=lambda: NOW)
    for _ in range(3):
        calibrator.learn(1100, 1000, "02134", confidence=90)
    return calibrator


def test_lidar_report_with_regional_correction(calibrator):
    assembler = ReportAssembler(TieredResolver(lidar=_lidar(), osm=_osm()), calibrator=calibrator)
    report = assembler.assemble(42.0, -71.0, MeasurementOptions(region_key="02134"), as_of=AS_OF)

    assert report.tiered.tier_used == 1
    assert report.accuracy_range == "95-98%"
    assert report.tiered.measurement.adjusted_area_sqft == 2400.0
    assert report.measurement.adjusted_area_sqft == pytest.approx(2640.0)
    assert report.correction_applied is True
    assert report.correction_details["reason"] == "correction-applied"
    assert report.accuracy_prediction["has_local_data"] is True


def test_report_cross_validates_against_secondaries(calibrator):
    assembler = ReportAssembler(TieredResolver(lidar=_lidar(), osm=_osm()), calibrator=calibrator)
    report = assembler.assemble(42.0, -71.0, MeasurementOptions(region_key="02134"), as_of=AS_OF)

    assert [c.source for c in report.validation.checks] == ["osm"]
    assert report.validation.primary_measurement.source == MeasurementSource.LIDAR
    assert report.validation.overall_validation == OverallValidation.DISCREPANCY_DETECTED


def test_report_serializes_and_explains(calibrator):
    assembler = ReportAssembler(TieredResolver(lidar=_lidar()), calibrator=calibrator)
    report = assembler.assemble(42.0, -71.0, MeasurementOptions(region_key="02134"), as_of=AS_OF)

    payload = json.loads(json.dumps(report.to_dict()))
    assert payload["accuracy_range"] == "95-98%"
    assert payload["correction_applied"] is True
    assert report.explain().startswith(f"Score: {report.confidence.score}/100")


def test_no_region_means_no_calibration(calibrator):
    assembler = ReportAssembler(TieredResolver(lidar=_lidar()), calibrator=calibrator)
    report = assembler.assemble(42.0, -71.0, as_of=AS_OF)

    assert report.correction_applied is False
    assert report.accuracy_prediction is None
    assert report.measurement.adjusted_area_sqft == 2400.0


def test_degraded_result_skips_correction_and_secondaries(calibrator):
    """Verify the manual-tracing placeholder is never corrected or cross-validated."""
    resolver = TieredResolver()
    assembler = ReportAssembler(resolver, calibrator=calibrator)

    with patch.object(resolver, "secondary_measurements") as secondaries:
        report = assembler.assemble(42.0, -71.0, MeasurementOptions(region_key="02134"), as_of=AS_OF)

    secondaries.assert_not_called()
    assert report.tiered.tier_used == 7
    assert report.measurement.is_degraded
    assert report.correction_applied is False
    assert report.validation.overall_validation == OverallValidation.UNVALIDATED
    assert report.accuracy_prediction is not None
    assert report.accuracy is None


def test_degraded_result_scores_low():
    """Verify nothing measured is never reported as moderate confidence."""
    report = ReportAssembler(TieredResolver()).assemble(42.0, -71.0, as_of=AS_OF)

    assert report.tiered.tier_used == 7
    assert report.confidence.score == 0
    assert report.confidence.level == ConfidenceLevel.LOW
    assert report.explain().startswith("Score: 0/100 (Low Confidence")


def test_accuracy_detection_runs_on_primary(calibrator):
    assembler = ReportAssembler(TieredResolver(lidar=_lidar(), osm=_osm()), calibrator=calibrator)
    report = assembler.assemble(42.0, -71.0, MeasurementOptions(region_key="02134"), as_of=AS_OF)

    assert report.accuracy.needs_correction is True
    assert [i.type for i in report.accuracy.issues] == ["source-discrepancy"]
    assert report.to_dict()["accuracy"]["recommended_action"] == "manual-review"
    assert assembler.accuracy.known_under_measurement("02134") == pytest.approx(10.0)


def test_imagery_and_seasonal_are_attached(calibrator):
    source = ImagerySource(
        provider="google",
        image_url="https://example.com/google.png",
        capture_date=date(2024, 3, 1),
        resolution_meters_per_pixel=0.149,
        quality=ImageryQuality.HIGH,
    )
    imagery = ImagerySourceManager(providers=[StaticProvider("google", source)])
    seasonal = MagicMock()

    assembler = ReportAssembler(TieredResolver(lidar=_lidar()), imagery=imagery, seasonal=seasonal)
    report = assembler.assemble(42.0, -71.0, as_of=AS_OF)

    assert report.imagery.recommended_primary.provider == "google"
    assert report.seasonal is seasonal.validate.return_value
    seasonal.validate.assert_called_once_with(42.0, -71.0, deadline=None)
