"""
Pitch calculations and pitch estimation.

Pitch is expressed either as degrees or as a rise:12 ratio. The pitch
multiplier converts a flat footprint area into sloped roof area.

Estimation order when no measured pitch exists:
    1. OSM roof:angle tag
    2. OSM roof:shape table
    3. Regional default for the address state
    4. Building-type table
    5. Default 4:12 (18.43 degrees)
"""

import math
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

DEFAULT_PITCH_DEGREES = 18.43  # 4:12

# rise:12 -> (degrees, multiplier)
STANDARD_PITCHES: Dict[str, Tuple[float, float]] = {
    "0:12": (0.0, 1.0),
    "1:12": (4.76, 1.003),
    "2:12": (9.46, 1.014),
    "3:12": (14.04, 1.031),
    "4:12": (18.43, 1.054),
    "5:12": (22.62, 1.083),
    "6:12": (26.57, 1.118),
    "7:12": (30.26, 1.158),
    "8:12": (33.69, 1.202),
    "9:12": (36.87, 1.250),
    "10:12": (39.81, 1.302),
    "11:12": (42.51, 1.357),
    "12:12": (45.0, 1.414),
    "14:12": (49.40, 1.537),
    "16:12": (53.13, 1.667),
    "18:12": (56.31, 1.803),
}

ROOF_SHAPE_PITCH = {
    "flat": 2,
    "skillion": 10,
    "gabled": 25,
    "hipped": 22,
    "pyramidal": 30,
    "gambrel": 25,
    "mansard": 35,
    "dome": 45,
    "round": 30,
    "saltbox": 28,
}

BUILDING_TYPE_PITCH = {
    "house": DEFAULT_PITCH_DEGREES,
    "residential": DEFAULT_PITCH_DEGREES,
    "yes": DEFAULT_PITCH_DEGREES,
    "garage": DEFAULT_PITCH_DEGREES,
    "detached": 22,
    "apartments": 15,
    "terrace": 18,
    "semi": 18,
    "semidetached_house": 18,
    "bungalow": 15,
    "cabin": 25,
    "farm": 22,
    "farmhouse": 22,
    "commercial": 5,
    "industrial": 3,
    "retail": 5,
    "warehouse": 3,
    "office": 5,
    "shed": 15,
    "barn": 25,
    "church": 35,
    "chapel": 30,
    "school": 15,
    "hospital": 10,
    "hotel": 15,
}


# ═══════════════════════════════════════════════════════════════════════════
# CONVERSIONS
# ═══════════════════════════════════════════════════════════════════════════
def pitch_ratio_to_degrees(ratio: float) -> float:
    return math.degrees(math.atan(ratio / 12))


def degrees_to_pitch_ratio(degrees: float) -> float:
    return math.tan(math.radians(degrees)) * 12


def pitch_multiplier_from_ratio(ratio: float) -> float:
    """sqrt((rise/12)^2 + 1)"""
    return math.sqrt((ratio / 12) ** 2 + 1)


def pitch_multiplier_from_degrees(degrees: float) -> float:
    return pitch_multiplier_from_ratio(degrees_to_pitch_ratio(degrees))


def area_to_squares(area_sqft: float) -> float:
    return area_sqft / 100


def nearest_standard_pitch(degrees: float) -> str:
    nearest = "0:12"
    min_diff = abs(degrees)
    for name, (std_degrees, _) in STANDARD_PITCHES.items():
        diff = abs(degrees - std_degrees)
        if diff < min_diff:
            min_diff = diff
            nearest = name
    return nearest


def pitch_category(degrees: float) -> str:
    if degrees <= 5:
        return "flat"
    if degrees <= 18.5:
        return "low"
    if degrees <= 33.7:
        return "medium"
    if degrees <= 45:
        return "steep"
    return "very-steep"


def weighted_average_pitch(segments: Iterable[Tuple[float, float]]) -> float:
    """
    Area-weighted mean pitch.

    Args:
        segments: (pitch_degrees, area_m2) pairs

    Returns:
        Mean pitch in degrees, or 0 when total area is zero
    """
    weighted = 0.0
    total_area = 0.0
    for pitch, area in segments:
        weighted += pitch * area
        total_area += area
    return weighted / total_area if total_area > 0 else 0.0


# ═══════════════════════════════════════════════════════════════════════════
# TAG / BUILDING TYPE ESTIMATES
# ═══════════════════════════════════════════════════════════════════════════
def pitch_from_osm_tags(tags: Dict[str, str]) -> Optional[float]:
    """Pitch from roof:angle or roof:shape tags, or None."""
    angle = tags.get("roof:angle")
    if angle:
        try:
            value = float(angle)
        except ValueError:
            value = None
        if value is not None and 0 < value < 90:
            return value

    shape = tags.get("roof:shape")
    if shape:
        return ROOF_SHAPE_PITCH.get(shape.strip().lower())

    return None


def pitch_from_building_type(building_type: str) -> float:
    return BUILDING_TYPE_PITCH.get(building_type.strip().lower(), DEFAULT_PITCH_DEGREES)


# ═══════════════════════════════════════════════════════════════════════════
# REGIONAL PITCH
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class RegionalPitchData:
    state: str
    state_name: str
    climate_zone: str  # "snow-load", "mild", "moderate", "unknown"
    default_ratio: float
    range_min: float
    range_max: float
    notes: str


def _region(state, name, zone, ratio, lo, hi, notes):
    return state, RegionalPitchData(state, name, zone, ratio, lo, hi, notes)


STATE_PITCH_DATA: Dict[str, RegionalPitchData] = dict([
    # Snow load regions
    _region("MA", "Massachusetts", "snow-load", 7, 6, 8, "Heavy snow load region"),
    _region("NH", "New Hampshire", "snow-load", 8, 6, 9, "Heavy snow load region"),
    _region("VT", "Vermont", "snow-load", 8, 6, 9, "Heavy snow load region"),
    _region("ME", "Maine", "snow-load", 8, 6, 9, "Heavy snow load region"),
    _region("CT", "Connecticut", "snow-load", 6, 5, 8, "Moderate to heavy snow"),
    _region("RI", "Rhode Island", "snow-load", 6, 5, 8, "Moderate to heavy snow"),
    _region("NY", "New York", "snow-load", 6, 5, 8, "Moderate to heavy snow"),
    _region("PA", "Pennsylvania", "snow-load", 6, 5, 8, "Moderate snow load"),
    _region("MI", "Michigan", "snow-load", 7, 6, 9, "Heavy lake-effect snow"),
    _region("WI", "Wisconsin", "snow-load", 7, 6, 8, "Heavy snow load"),
    _region("MN", "Minnesota", "snow-load", 7, 6, 9, "Very heavy snow load"),
    _region("ND", "North Dakota", "snow-load", 7, 6, 8, "Heavy snow load"),
    _region("SD", "South Dakota", "snow-load", 6, 5, 8, "Moderate to heavy snow"),
    _region("MT", "Montana", "snow-load", 7, 6, 9, "Heavy mountain snow"),
    _region("WY", "Wyoming", "snow-load", 7, 6, 9, "Heavy mountain snow"),
    _region("CO", "Colorado", "snow-load", 6, 5, 8, "Variable snow by elevation"),
    _region("ID", "Idaho", "snow-load", 6, 5, 8, "Moderate to heavy snow"),
    _region("UT", "Utah", "snow-load", 6, 5, 8, "Variable snow by elevation"),
    _region("IA", "Iowa", "snow-load", 6, 5, 7, "Moderate snow load"),
    _region("NE", "Nebraska", "snow-load", 5, 4, 7, "Light to moderate snow"),
    _region("OH", "Ohio", "snow-load", 6, 5, 7, "Lake-effect snow in north"),
    _region("IN", "Indiana", "snow-load", 5, 4, 7, "Moderate snow load"),
    _region("IL", "Illinois", "snow-load", 5, 4, 7, "Moderate snow load"),
    _region("AK", "Alaska", "snow-load", 9, 8, 12, "Extreme snow load"),
    # Mild climate regions
    _region("FL", "Florida", "mild", 4, 3, 5, "Mild climate, hurricane considerations"),
    _region("TX", "Texas", "mild", 4, 3, 5, "Mild climate, varies by region"),
    _region("AZ", "Arizona", "mild", 3, 2, 4, "Desert climate, minimal precipitation"),
    _region("NM", "New Mexico", "mild", 3, 2, 5, "Desert to mountain variation"),
    _region("NV", "Nevada", "mild", 3, 2, 5, "Desert climate, mountain areas vary"),
    _region("LA", "Louisiana", "mild", 4, 3, 5, "Humid subtropical, hurricane considerations"),
    _region("MS", "Mississippi", "mild", 4, 3, 5, "Humid subtropical"),
    _region("AL", "Alabama", "mild", 4, 3, 5, "Humid subtropical"),
    _region("GA", "Georgia", "mild", 4, 3, 5, "Humid subtropical"),
    _region("SC", "South Carolina", "mild", 4, 3, 5, "Humid subtropical"),
    _region("HI", "Hawaii", "mild", 4, 3, 5, "Tropical climate"),
    # Moderate climate regions
    _region("CA", "California", "moderate", 5, 4, 6, "Mediterranean climate, varies by region"),
    _region("OR", "Oregon", "moderate", 5, 4, 7, "Pacific Northwest, moderate rain"),
    _region("WA", "Washington", "moderate", 5, 4, 7, "Pacific Northwest, moderate rain, mountain snow"),
    _region("NJ", "New Jersey", "moderate", 5, 4, 6, "Moderate climate, coastal influence"),
    _region("DE", "Delaware", "moderate", 5, 4, 6, "Moderate climate, coastal influence"),
    _region("MD", "Maryland", "moderate", 5, 4, 6, "Moderate climate, varies by region"),
    _region("VA", "Virginia", "moderate", 5, 4, 6, "Moderate climate, mountain areas vary"),
    _region("WV", "West Virginia", "moderate", 5, 4, 7, "Moderate to heavy, mountain influence"),
    _region("NC", "North Carolina", "moderate", 5, 4, 6, "Moderate climate, mountain areas vary"),
    _region("TN", "Tennessee", "moderate", 5, 4, 6, "Humid subtropical to humid continental"),
    _region("KY", "Kentucky", "moderate", 5, 4, 6, "Humid subtropical"),
    _region("MO", "Missouri", "moderate", 5, 4, 6, "Continental climate, moderate precipitation"),
    _region("KS", "Kansas", "moderate", 4, 3, 6, "Semi-arid to humid continental"),
    _region("OK", "Oklahoma", "moderate", 4, 3, 5, "Humid subtropical, tornado region"),
    _region("AR", "Arkansas", "moderate", 4, 3, 6, "Humid subtropical"),
    _region("DC", "District of Columbia", "moderate", 5, 4, 6, "Humid subtropical"),
])

DEFAULT_REGIONAL_PITCH = RegionalPitchData(
    "XX", "Unknown", "unknown", 5, 4, 6, "Default values used for unknown region"
)

# Longest names first so "west virginia" wins over "virginia"
_STATE_NAMES = sorted(
    ((data.state_name.lower(), code) for code, data in STATE_PITCH_DATA.items()),
    key=lambda item: len(item[0]),
    reverse=True,
)

_ZIP_PATTERN = re.compile(r",\s*([A-Z]{2})\s+\d{5}", re.IGNORECASE)
_STATE_PATTERN = re.compile(r",\s*([A-Z]{2})\s*(?:,|$)", re.IGNORECASE)


def get_regional_pitch_data(state_code: str) -> RegionalPitchData:
    return STATE_PITCH_DATA.get(state_code.strip().upper(), DEFAULT_REGIONAL_PITCH)


def extract_state_from_address(address: Optional[str]) -> Optional[str]:
    """
    Pull a two-letter US state code out of a free-form address.

    Tries "City, ST 12345", then "City, ST", then a full state name.
    """
    if not address:
        return None

    match = _ZIP_PATTERN.search(address) or _STATE_PATTERN.search(address)
    if match:
        return match.group(1).upper()

    lowered = address.lower()
    for name, code in _STATE_NAMES:
        if name in lowered:
            return code

    return None


@dataclass(frozen=True)
class RegionalPitchEstimate:
    state_code: Optional[str]
    pitch_degrees: float
    pitch_ratio: float
    climate_zone: str
    confidence: int
    notes: str


def regional_pitch_estimate(address: Optional[str]) -> RegionalPitchEstimate:
    state = extract_state_from_address(address)
    data = get_regional_pitch_data(state) if state else DEFAULT_REGIONAL_PITCH
    return RegionalPitchEstimate(
        state_code=state,
        pitch_degrees=pitch_ratio_to_degrees(data.default_ratio),
        pitch_ratio=data.default_ratio,
        climate_zone=data.climate_zone,
        confidence=70 if state else 50,
        notes=data.notes,
    )


# ═══════════════════════════════════════════════════════════════════════════
# COMBINED ESTIMATE
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class PitchEstimate:
    degrees: float
    source: str  # "osm-tag", "regional", "building-type", "default"
    detail: Optional[str] = None


PITCH_SOURCE_NOTES = {
    "osm-tag": "using OSM roof angle tag",
    "regional": "using regional climate estimate",
    "building-type": "estimated from building type",
    "default": "using default pitch",
}


def estimate_pitch(tags: Optional[Dict[str, str]] = None, address: Optional[str] = None) -> PitchEstimate:
    """Best available pitch estimate for a building without measured pitch."""
    tags = tags or {}

    tagged = pitch_from_osm_tags(tags)
    if tagged is not None:
        return PitchEstimate(tagged, "osm-tag")

    if address:
        regional = regional_pitch_estimate(address)
        if regional.state_code:
            return PitchEstimate(regional.pitch_degrees, "regional", regional.state_code)

    building = tags.get("building")
    if building:
        return PitchEstimate(pitch_from_building_type(building), "building-type", building)

    return PitchEstimate(DEFAULT_PITCH_DEGREES, "default")
