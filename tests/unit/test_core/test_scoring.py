import pytest
from datetime import date

from core.models import ConfidenceFactors, ConfidenceLevel, ImageryQuality
from core.scoring import (
    ConfidenceScorer,
    calculate_source_agreement,
    explain_score,
    get_confidence_level,
    get_scorer,
    manual_tracing_score,
    score,
)

AS_OF = date(2024, 1, 1)


def _impacts(result):
    return {f.name: f.impact for f in result.factors}


def test_scorer_singleton():
    assert get_scorer() is get_scorer()
    assert isinstance(get_scorer(), ConfidenceScorer)


def test_base_score():
    """Verify no factors means the base score."""
    result = score(ConfidenceFactors())
    assert result.score == 70
    assert result.level == ConfidenceLevel.MODERATE
    assert result.label == "Moderate Confidence"
    assert result.factors == []


def test_best_case_clamps_at_100():
    result = score(ConfidenceFactors(
        has_gaf_calibration=True,
        has_lidar_data=True,
        imagery_quality=ImageryQuality.HIGH,
    ))
    assert result.score == 100
    assert result.level == ConfidenceLevel.GAF_LEVEL
    assert _impacts(result) == {"GAF Calibration": 25, "LiDAR Data": 20, "Imagery Quality": 10}


def test_worst_case_stays_in_range():
    result = score(ConfidenceFactors(
        imagery_quality=ImageryQuality.LOW,
        imagery_date=date(2015, 1, 1),
        segment_count=20,
        pitch_degrees=60,
        source_count=3,
        source_agreement_percent=40,
    ), as_of=AS_OF)
    # 70 - 15 - 10 - 10 - 15 - 5
    assert result.score == 15
    assert result.level == ConfidenceLevel.LOW
    assert result.label.startswith("Low Confidence")


def test_imagery_freshness_uses_as_of():
    recent = score(ConfidenceFactors(imagery_date=date(2023, 6, 1)), as_of=AS_OF)
    older = score(ConfidenceFactors(imagery_date=date(2021, 6, 1)), as_of=AS_OF)

    assert _impacts(recent)["Imagery Freshness"] == 5
    assert _impacts(older)["Imagery Freshness"] == -5


def test_complexity_and_pitch_steps():
    result = score(ConfidenceFactors(segment_count=4, pitch_degrees=3))
    assert _impacts(result) == {"Roof Complexity": 5, "Pitch Analysis": 5}

    result = score(ConfidenceFactors(segment_count=10, pitch_degrees=40))
    assert _impacts(result) == {"Roof Complexity": -5, "Pitch Analysis": -5}


def test_source_agreement_needs_two_sources():
    single = score(ConfidenceFactors(source_count=1, source_agreement_percent=100))
    assert "Source Agreement" not in _impacts(single)

    agreeing = score(ConfidenceFactors(source_count=2, source_agreement_percent=96))
    assert _impacts(agreeing)["Source Agreement"] == 15
    assert agreeing.factors[0].description == "2 sources agree within 5%"

    loose = score(ConfidenceFactors(source_count=2, source_agreement_percent=85))
    assert _impacts(loose)["Source Agreement"] == 5


def test_confidence_levels():
    assert get_confidence_level(90) == ConfidenceLevel.GAF_LEVEL
    assert get_confidence_level(89.9) == ConfidenceLevel.HIGH
    assert get_confidence_level(75) == ConfidenceLevel.HIGH
    assert get_confidence_level(60) == ConfidenceLevel.MODERATE
    assert get_confidence_level(59) == ConfidenceLevel.LOW


def test_calculate_source_agreement():
    assert calculate_source_agreement([]) == 0.0
    assert calculate_source_agreement([2000]) == 100.0
    assert calculate_source_agreement([1000, 1100]) == pytest.approx(100 - 50 / 1050 * 100)
    assert calculate_source_agreement([0, 0]) == 0.0


def test_explain_score():
    result = score(ConfidenceFactors(imagery_quality=ImageryQuality.LOW))
    text = explain_score(result)

    assert text.splitlines()[0] == "Score: 55/100 (Low Confidence - Manual Verification Recommended)"
    assert "Base: 70" in text
    assert "Imagery Quality: -15 (Low quality satellite imagery reduces accuracy)" in text


def test_manual_tracing_score():
    result = manual_tracing_score()

    assert result.score == 0
    assert result.level == ConfidenceLevel.LOW
    assert "Manual Tracing Required: -70" in explain_score(result)
