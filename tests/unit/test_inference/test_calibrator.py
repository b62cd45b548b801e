import json
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import joblib
import pytest

from core.exceptions import InvalidInputError
from core.models import Complexity, MeasurementResult, MeasurementSource
from inference.calibrator import (
    CalibrationConfig,
    SelfLearningCalibrator,
    calculate_trend,
    weighted_correction,
)
from inference.correction_store import (
    CorrectionDataPoint,
    CorrectionSource,
    InMemoryCorrectionStore,
    RecommendedAction,
    TrendDirection,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def calibrator():
    return SelfLearningCalibrator(InMemoryCorrectionStore(), now_fn=lambda: NOW)


def _point(factor, days_ago=0, source=CorrectionSource.GAF_REPORT, confidence=90.0):
    return CorrectionDataPoint(
        id=f"p-{factor}-{days_ago}",
        region_key="02134",
        reference_area_sqft=1000.0,
        ground_truth_area_sqft=1000.0 * factor,
        correction_factor=factor,
        source=source,
        timestamp=NOW - timedelta(days=days_ago),
        confidence=confidence,
    )


def _measurement(area=2000.0, confidence=70):
    return MeasurementResult(
        footprint_area_sqm=area / 10.7639,
        footprint_area_sqft=area,
        adjusted_area_sqft=area,
        squares=area / 100,
        pitch_degrees=18.43,
        pitch_multiplier=1.054,
        segment_count=4,
        complexity=Complexity.SIMPLE,
        source=MeasurementSource.OSM,
        confidence=confidence,
        warning="Enhanced OSM measurement",
    )


# ═══════════════════════════════════════════════════════════════════════════
# MODEL MATH
# ═══════════════════════════════════════════════════════════════════════════
def test_weighted_correction_empty():
    assert weighted_correction([], NOW, CalibrationConfig()) == (1.0, 0.0)


def test_stale_points_carry_no_weight():
    assert weighted_correction([_point(1.3, days_ago=400)], NOW, CalibrationConfig()) == (1.0, 0.0)


def test_recent_points_weigh_more():
    factor, _ = weighted_correction([_point(1.2), _point(1.0, days_ago=182)], NOW, CalibrationConfig())
    assert 1.1 < factor < 1.2


def test_source_weights():
    points = [
        _point(1.2, source=CorrectionSource.LIDAR),
        _point(1.0, source=CorrectionSource.MANUAL_VERIFICATION),
    ]
    factor, _ = weighted_correction(points, NOW, CalibrationConfig())
    assert factor == pytest.approx((1.2 * 1.2 + 1.0 * 0.8) / 2.0)


def test_outlier_rejected():
    points = [_point(1.0, days_ago=i) for i in range(5)] + [_point(100.0)]
    factor, _ = weighted_correction(points, NOW, CalibrationConfig())
    assert factor == pytest.approx(1.0, abs=1e-9)


def test_calculate_trend():
    improving = [_point(1.3, 30), _point(1.3, 20), _point(1.05, 10), _point(1.05, 0)]
    degrading = [_point(1.0, 30), _point(1.0, 20), _point(1.2, 10), _point(1.2, 0)]
    stable = [_point(1.1, 30), _point(1.1, 20), _point(1.11, 10)]

    assert calculate_trend(improving) == TrendDirection.IMPROVING
    assert calculate_trend(degrading) == TrendDirection.DEGRADING
    assert calculate_trend(stable) == TrendDirection.STABLE
    assert calculate_trend(improving[:2]) == TrendDirection.STABLE


# ═══════════════════════════════════════════════════════════════════════════
# LEARN / APPLY
# ═══════════════════════════════════════════════════════════════════════════
def test_five_agreeing_points_high_confidence(calibrator):
    for _ in range(5):
        calibrator.learn(2400, 2000, "02134", confidence=90)

    model = calibrator.get_model("02134")
    assert model.correction_factor == pytest.approx(1.2)
    assert model.sample_count == 5
    assert model.weighted_confidence == 95
    assert model.recommended_action == RecommendedAction.HIGH_CONFIDENCE
    assert model.trend_direction == TrendDirection.STABLE


def test_learn_returns_point(calibrator):
    point = calibrator.learn(2450, 2100, "02134-1234", source="lidar")

    assert point.region_key == "02134"
    assert point.source == CorrectionSource.LIDAR
    assert point.confidence == 95.0
    assert point.correction_factor == pytest.approx(2450 / 2100)
    assert point.timestamp == NOW
    assert len(point.id) == 32


def test_naive_timestamp_is_utc(calibrator):
    point = calibrator.learn(2400, 2000, "02134", timestamp=datetime(2024, 5, 1))
    assert point.timestamp == datetime(2024, 5, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("kwargs", [
    dict(ground_truth_sqft=2000, reference_sqft=0, region_key="02134"),
    dict(ground_truth_sqft=-1, reference_sqft=2000, region_key="02134"),
    dict(ground_truth_sqft=2000, reference_sqft=2000, region_key="02134", confidence=101),
    dict(ground_truth_sqft=2000, reference_sqft=2000, region_key="  "),
    dict(ground_truth_sqft=2000, reference_sqft=2000, region_key="02134", source="drone"),
])
def test_learn_rejects_invalid_input(calibrator, kwargs):
    with pytest.raises(InvalidInputError):
        calibrator.learn(**kwargs)
    assert calibrator.list_models() == []


def test_invalid_input_is_value_error(calibrator):
    with pytest.raises(ValueError):
        calibrator.learn(2000, 0, "02134")


def test_apply_without_model(calibrator):
    measurement = _measurement()
    corrected, applied, details = calibrator.apply(measurement, "99999")

    assert corrected is measurement
    assert not applied
    assert details["reason"] == "no-model"
    assert details["data_point_count"] == 0


def test_apply_insufficient_data(calibrator):
    calibrator.learn(2200, 2000, "02134")
    calibrator.learn(2200, 2000, "02134")

    _, applied, details = calibrator.apply(_measurement(), "02134")
    assert not applied
    assert details["reason"] == "insufficient-data"
    assert details["data_point_count"] == 2


def test_apply_correction(calibrator):
    for _ in range(3):
        calibrator.learn(2200, 2000, "02134", confidence=90)
    measurement = _measurement(2000, confidence=70)

    corrected, applied, details = calibrator.apply(measurement, "02134")

    assert applied
    assert corrected.adjusted_area_sqft == pytest.approx(2200)
    assert corrected.squares == pytest.approx(22)
    assert corrected.confidence == 85
    assert "Self-learning correction applied (factor: 1.100, based on 3 samples)." in corrected.warning
    assert details["reason"] == "correction-applied"
    assert details["confidence_boost"] == 15
    assert measurement.adjusted_area_sqft == 2000


def test_concurrent_learns_for_one_region(calibrator):
    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(lambda _: calibrator.learn(2200, 2000, "02134"), range(40)))

    assert calibrator.get_model("02134").sample_count == 40


# ═══════════════════════════════════════════════════════════════════════════
# REPORTING
# ═══════════════════════════════════════════════════════════════════════════
def test_predict_accuracy_without_data(calibrator):
    prediction = calibrator.predict_accuracy("02134", 85)
    assert prediction["expected_accuracy"] == 75
    assert not prediction["has_local_data"]


def test_predict_accuracy_under_measuring_region(calibrator):
    for _ in range(3):
        calibrator.learn(2400, 2000, "02134", confidence=90)

    prediction = calibrator.predict_accuracy("02134", 70)

    assert prediction["has_local_data"]
    assert prediction["expected_accuracy"] == pytest.approx(85.0)
    assert prediction["recommendation"] == (
        "Automated measurements typically under-measure by 20.0% in this area. "
        "Correction will be applied."
    )


def test_get_state(calibrator):
    for _ in range(3):
        calibrator.learn(2300, 2000, "02134")
    calibrator.learn(2000, 2000, "10001")

    state = calibrator.get_state()
    assert state.total_data_points == 4
    assert state.regions_modeled == 2
    assert state.top_performing_regions == ["02134"]
    assert state.needs_attention_regions == []
    assert state.average_accuracy_improvement == pytest.approx(15.0)


def test_import_historical_skips_bad_records(calibrator):
    result = calibrator.import_historical([
        {"region_key": "02134", "ground_truth_sqft": 2400, "reference_sqft": 2000},
        {"region_key": "99999", "ground_truth_sqft": 2400, "reference_sqft": 0},
        {"region_key": "02134", "ground_truth_sqft": 2300, "reference_sqft": 2000,
         "source": "manual-verification", "timestamp": "2024-05-01T00:00:00Z"},
        {"region_key": "10001", "ground_truth_sqft": 2400},
    ])

    assert result["imported"] == 2
    assert result["errors"][0] == "Failed to import data for region 99999: Reference area must be positive, got 0"
    assert result["errors"][1].startswith("Failed to import data for region 10001:")
    assert calibrator.get_model("02134").sample_count == 2


def test_summary_frame(calibrator):
    assert list(calibrator.summary_frame().columns) == [
        "region_key", "correction_factor", "sample_count", "weighted_confidence",
        "trend_direction", "recommended_action", "last_updated",
    ]

    calibrator.learn(2400, 2000, "10001")
    calibrator.learn(2200, 2000, "02134")
    frame = calibrator.summary_frame()

    assert list(frame["region_key"]) == ["02134", "10001"]
    assert frame.loc[1, "correction_factor"] == pytest.approx(1.2)
    assert frame.loc[0, "recommended_action"] == "needs-more-data"


# ═══════════════════════════════════════════════════════════════════════════
# PERSISTENCE
# ═══════════════════════════════════════════════════════════════════════════
def test_export_import_round_trip(calibrator):
    for gt in (2400, 2300, 2350):
        calibrator.learn(gt, 2000, "02134")
    exported = calibrator.export_data()

    restored = SelfLearningCalibrator(now_fn=lambda: NOW)
    restored.learn(1000, 1000, "55555")
    assert restored.import_data(exported) == 1

    assert restored.get_model("55555") is None
    assert restored.export_data() == exported
    assert json.loads(exported)["models"][0]["region_key"] == "02134"


def test_save_and_load(calibrator, tmp_path):
    for _ in range(3):
        calibrator.learn(2200, 2000, "02134")
    path = str(tmp_path / "calibration.joblib")

    assert calibrator.save(path)

    restored = SelfLearningCalibrator(now_fn=lambda: NOW)
    assert restored.load(path)
    assert restored.get_model("02134") == calibrator.get_model("02134")


def test_save_and_load_failures(calibrator, tmp_path):
    assert not calibrator.save(str(tmp_path / "missing" / "calibration.joblib"))
    assert not calibrator.load(str(tmp_path / "nothing-here.joblib"))


def test_load_rejects_corrupt_checkpoint(calibrator, tmp_path):
    """Verify a garbage file is reported, not raised."""
    calibrator.learn(2200, 2000, "02134")
    path = tmp_path / "corrupt.joblib"
    path.write_bytes(b"not a joblib checkpoint")

    assert calibrator.load(str(path)) is False
    assert calibrator.get_model("02134") is not None


def test_load_rejects_checkpoint_without_models(calibrator, tmp_path):
    path = str(tmp_path / "other.joblib")
    joblib.dump({"model": "something else"}, path)

    assert calibrator.load(path) is False


def test_import_data_waits_for_in_flight_learn(calibrator):
    """Verify a restore cannot interleave with a learn on the same region."""
    calibrator.learn(2200, 2000, "02134")
    exported = calibrator.export_data()
    calibrator.learn(2400, 2000, "02134")

    lock = calibrator._region_lock("02134")
    lock.acquire()
    worker = threading.Thread(target=calibrator.import_data, args=(exported,))
    worker.start()
    worker.join(timeout=0.2)
    assert worker.is_alive()
    assert calibrator.get_model("02134").sample_count == 2

    lock.release()
    worker.join(timeout=5)
    assert not worker.is_alive()
    assert calibrator.get_model("02134").sample_count == 1


def test_clear(calibrator):
    calibrator.learn(2200, 2000, "02134")
    calibrator.clear()
    assert calibrator.list_models() == []
