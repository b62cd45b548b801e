"""
Measurement builders.

Each builder turns one provider payload into a MeasurementResult. A result
always comes from exactly one source; nothing here combines areas across
sources.
"""

from typing import List, Optional

from core.geometry import analyze_geometry
from core.models import (
    SQM_TO_SQFT,
    BuildingFootprint,
    Complexity,
    ImageryQuality,
    MeasurementResult,
    MeasurementSource,
)
from core.pitch import (
    DEFAULT_PITCH_DEGREES,
    PITCH_SOURCE_NOTES,
    estimate_pitch,
    pitch_multiplier_from_degrees,
    regional_pitch_estimate,
    weighted_average_pitch,
)
from loaders.contracts import LidarMeasurement, SolarBuildingInsights


LIDAR_CONFIDENCE = 95
SOLAR_BASE_CONFIDENCE = 85
FOOTPRINT_BASE_CONFIDENCE = 50
FOOTPRINT_CONFIDENCE_CAP = 90

MANUAL_TRACING_WARNING = "Manual tracing required - trace the roof outline to calculate area"

FOOTPRINT_SOURCE_LABELS = {
    "microsoft": "Microsoft Building Footprints",
    "osm": "OpenStreetMap Footprint",
    "auto-trace": "Auto-Traced Imagery",
}


def from_lidar(payload: LidarMeasurement) -> MeasurementResult:
    """LiDAR areas are taken as reported."""
    segments = payload.segment_count or 1
    return MeasurementResult(
        footprint_area_sqm=payload.total_area_sqm,
        footprint_area_sqft=payload.total_area_sqft,
        adjusted_area_sqft=payload.adjusted_area_sqft,
        squares=payload.adjusted_area_sqft / 100,
        pitch_degrees=payload.pitch_degrees,
        pitch_multiplier=payload.pitch_multiplier or 1.0,
        segment_count=segments,
        complexity=Complexity.from_segments(segments),
        source=MeasurementSource.LIDAR,
        confidence=LIDAR_CONFIDENCE,
        imagery_date=payload.imagery_date,
    )


def from_solar(insights: SolarBuildingInsights) -> MeasurementResult:
    """
    Solar segment areas are already sloped surface area.

    The pitch multiplier is reported for reference only and is NOT applied
    to the area again.
    """
    total_sqm = sum(seg.area_sqm for seg in insights.segments)
    total_sqft = total_sqm * SQM_TO_SQFT
    pitch = weighted_average_pitch((seg.pitch_degrees, seg.area_sqm) for seg in insights.segments)

    confidence = SOLAR_BASE_CONFIDENCE
    if insights.imagery_quality == ImageryQuality.HIGH:
        confidence += 5
    elif insights.imagery_quality == ImageryQuality.LOW:
        confidence -= 10

    return MeasurementResult(
        footprint_area_sqm=total_sqm,
        footprint_area_sqft=total_sqft,
        adjusted_area_sqft=total_sqft,
        squares=total_sqft / 100,
        pitch_degrees=pitch,
        pitch_multiplier=pitch_multiplier_from_degrees(pitch),
        segment_count=len(insights.segments),
        complexity=Complexity.from_segments(len(insights.segments)),
        source=MeasurementSource.SOLAR,
        confidence=confidence,
        imagery_quality=insights.imagery_quality,
        imagery_date=insights.imagery_date,
    )


def _sloped(
    footprint: BuildingFootprint,
    pitch_degrees: float,
    source: MeasurementSource,
    confidence: float,
    warning: str,
) -> MeasurementResult:
    """Footprint-based result: flat area times pitch multiplier."""
    analysis = analyze_geometry(footprint.geometry)
    multiplier = pitch_multiplier_from_degrees(pitch_degrees)
    adjusted = footprint.area_sqft * multiplier

    return MeasurementResult(
        footprint_area_sqm=footprint.area_sqm,
        footprint_area_sqft=footprint.area_sqft,
        adjusted_area_sqft=adjusted,
        squares=adjusted / 100,
        pitch_degrees=pitch_degrees,
        pitch_multiplier=multiplier,
        segment_count=analysis.estimated_segments,
        complexity=analysis.complexity,
        source=source,
        confidence=min(confidence, FOOTPRINT_CONFIDENCE_CAP),
        warning=warning,
    )


def from_osm_footprint(footprint: BuildingFootprint, address: Optional[str] = None) -> MeasurementResult:
    """
    OSM outline with an estimated pitch.

    Pitch comes from the roof tags, then the address state, then the
    building type, then the 4:12 default.
    """
    data_sources: List[str] = [FOOTPRINT_SOURCE_LABELS["osm"]]
    if footprint.tags:
        data_sources.append("OpenStreetMap Tags")

    confidence = FOOTPRINT_BASE_CONFIDENCE
    if len(footprint.geometry) >= 3:
        confidence += 5

    pitch = estimate_pitch(footprint.tags, address)
    if pitch.source == "osm-tag":
        confidence += 15
        data_sources.append("OSM Roof Tags")
    elif pitch.source == "regional":
        confidence += 10
        data_sources.append(f"Regional Pitch ({pitch.detail})")
    elif pitch.source == "building-type":
        confidence += 5

    warning = (
        f"Enhanced OSM measurement ({PITCH_SOURCE_NOTES[pitch.source]}). "
        f"Data sources: {', '.join(data_sources)}"
    )
    return _sloped(footprint, pitch.degrees, MeasurementSource.OSM, confidence, warning)


def from_footprint_estimate(
    footprint: BuildingFootprint,
    address: Optional[str] = None,
    elevation_m: Optional[float] = None,
) -> MeasurementResult:
    """
    Estimate from a Microsoft or auto-traced outline.

    These outlines carry no roof tags, so pitch is regional or the default.
    """
    label = FOOTPRINT_SOURCE_LABELS.get(footprint.source, footprint.source)
    data_sources: List[str] = [label]

    confidence = FOOTPRINT_BASE_CONFIDENCE
    if footprint.source == "microsoft":
        confidence += 10
    if len(footprint.geometry) >= 3:
        confidence += 5

    if elevation_m is not None:
        data_sources.append("USGS 3DEP Elevation")

    pitch_degrees = DEFAULT_PITCH_DEGREES
    pitch_source = "default"
    regional = regional_pitch_estimate(address)
    if regional.state_code:
        pitch_degrees = regional.pitch_degrees
        pitch_source = "regional"
        confidence += 10
        data_sources.append(f"Regional Pitch ({regional.state_code})")

    warning = (
        f"Footprint estimate ({PITCH_SOURCE_NOTES[pitch_source]}). "
        f"Data sources: {', '.join(data_sources)}"
    )
    return _sloped(footprint, pitch_degrees, MeasurementSource.FOOTPRINT_ESTIMATE, confidence, warning)


def manual_placeholder() -> MeasurementResult:
    """Tier 7 result: valid but empty, the caller must trace the roof."""
    return MeasurementResult(
        footprint_area_sqm=0.0,
        footprint_area_sqft=0.0,
        adjusted_area_sqft=0.0,
        squares=0.0,
        pitch_degrees=0.0,
        pitch_multiplier=1.0,
        segment_count=0,
        complexity=Complexity.SIMPLE,
        source=MeasurementSource.MANUAL,
        confidence=0,
        warning=MANUAL_TRACING_WARNING,
    )
