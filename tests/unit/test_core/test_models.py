import pytest
from dataclasses import FrozenInstanceError
from datetime import date

from core.measurement import manual_placeholder
from core.models import (
    Complexity,
    ImageryQuality,
    MeasurementResult,
    MeasurementSource,
    TieredMeasurementResult,
    TierFailure,
)


def _measurement(**overrides):
    values = dict(
        footprint_area_sqm=200.0,
        footprint_area_sqft=2152.78,
        adjusted_area_sqft=2400.0,
        squares=24.0,
        pitch_degrees=26.57,
        pitch_multiplier=1.118,
        segment_count=6,
        complexity=Complexity.MODERATE,
        source=MeasurementSource.LIDAR,
        confidence=95,
        imagery_date=date(2023, 5, 1),
    )
    values.update(overrides)
    return MeasurementResult(**values)


def test_complexity_from_segments():
    """Verify segment-count buckets."""
    assert Complexity.from_segments(4) == Complexity.SIMPLE
    assert Complexity.from_segments(5) == Complexity.MODERATE
    assert Complexity.from_segments(12) == Complexity.COMPLEX
    assert Complexity.from_segments(13) == Complexity.VERY_COMPLEX


def test_imagery_quality_parse():
    assert ImageryQuality.parse("HIGH") == ImageryQuality.HIGH
    assert ImageryQuality.parse(" medium ") == ImageryQuality.MEDIUM
    assert ImageryQuality.parse(None) == ImageryQuality.UNKNOWN
    assert ImageryQuality.parse("IMAGERY_QUALITY_UNSPECIFIED") == ImageryQuality.UNKNOWN


def test_measurement_is_immutable():
    measurement = _measurement()
    with pytest.raises(FrozenInstanceError):
        measurement.adjusted_area_sqft = 1.0


def test_with_adjusted_area_returns_new_value():
    original = _measurement()
    corrected = original.with_adjusted_area(2640.0, confidence=97)

    assert corrected.adjusted_area_sqft == 2640.0
    assert corrected.squares == pytest.approx(26.4)
    assert corrected.confidence == 97
    assert original.adjusted_area_sqft == 2400.0
    assert original.confidence == 95


def test_is_degraded():
    assert manual_placeholder().is_degraded
    assert not _measurement().is_degraded


def test_to_dict_is_json_friendly():
    result = TieredMeasurementResult(
        measurement=_measurement(),
        tier_used=1,
        tier_name="LiDAR (Instant Roofer)",
        higher_tier_failures=[TierFailure(1, "x", "y")],
    )
    data = result.to_dict()

    assert data["measurement"]["source"] == "lidar"
    assert data["measurement"]["complexity"] == "moderate"
    assert data["measurement"]["imagery_date"] == "2023-05-01"
    assert data["higher_tier_failures"][0]["reason"] == "y"
