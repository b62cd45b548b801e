import pytest

from core.pitch import (
    DEFAULT_PITCH_DEGREES,
    estimate_pitch,
    extract_state_from_address,
    get_regional_pitch_data,
    nearest_standard_pitch,
    pitch_category,
    pitch_from_building_type,
    pitch_from_osm_tags,
    pitch_multiplier_from_degrees,
    pitch_multiplier_from_ratio,
    pitch_ratio_to_degrees,
    regional_pitch_estimate,
    weighted_average_pitch,
)


def test_conversions():
    assert pitch_ratio_to_degrees(12) == pytest.approx(45.0)
    assert pitch_ratio_to_degrees(4) == pytest.approx(18.43, abs=0.01)
    assert pitch_multiplier_from_ratio(12) == pytest.approx(2 ** 0.5)
    assert pitch_multiplier_from_ratio(0) == 1.0
    assert pitch_multiplier_from_degrees(26.57) == pytest.approx(1.118, abs=0.001)


def test_nearest_standard_pitch():
    assert nearest_standard_pitch(27) == "6:12"
    assert nearest_standard_pitch(1) == "0:12"
    assert nearest_standard_pitch(60) == "18:12"


def test_pitch_category():
    assert pitch_category(3) == "flat"
    assert pitch_category(18.43) == "low"
    assert pitch_category(26) == "medium"
    assert pitch_category(40) == "steep"
    assert pitch_category(50) == "very-steep"


def test_weighted_average_pitch():
    assert weighted_average_pitch([(30, 60), (20, 40)]) == pytest.approx(26.0)
    assert weighted_average_pitch([]) == 0.0


def test_pitch_from_osm_tags():
    """Verify roof:angle wins, then roof:shape."""
    assert pitch_from_osm_tags({"roof:angle": "35", "roof:shape": "flat"}) == 35.0
    assert pitch_from_osm_tags({"roof:angle": "steep", "roof:shape": "Hipped"}) == 22
    assert pitch_from_osm_tags({"roof:angle": "0", "roof:shape": "gabled"}) == 25
    assert pitch_from_osm_tags({"roof:shape": "onion"}) is None
    assert pitch_from_osm_tags({}) is None


def test_pitch_from_building_type():
    assert pitch_from_building_type("Warehouse") == 3
    assert pitch_from_building_type("spaceport") == DEFAULT_PITCH_DEGREES


@pytest.mark.parametrize("address,state", [
    ("1 Main St, Boston, MA 02134", "MA"),
    ("500 Congress Ave, Austin, TX", "TX"),
    ("12 Hill Rd, Charleston, West Virginia", "WV"),
    ("Somewhere without a state", None),
    (None, None),
])
def test_extract_state_from_address(address, state):
    assert extract_state_from_address(address) == state


def test_regional_pitch():
    assert get_regional_pitch_data("mn").climate_zone == "snow-load"
    assert get_regional_pitch_data("ZZ").state == "XX"

    estimate = regional_pitch_estimate("1 Main St, Boston, MA 02134")
    assert estimate.state_code == "MA"
    assert estimate.pitch_ratio == 7
    assert estimate.pitch_degrees == pytest.approx(30.26, abs=0.01)
    assert estimate.confidence == 70

    unknown = regional_pitch_estimate(None)
    assert unknown.state_code is None
    assert unknown.confidence == 50


def test_estimate_pitch_precedence():
    address = "1 Main St, Miami, FL 33101"
    tagged = estimate_pitch({"roof:angle": "40", "building": "house"}, address)
    assert (tagged.degrees, tagged.source) == (40.0, "osm-tag")

    regional = estimate_pitch({"building": "warehouse"}, address)
    assert regional.source == "regional"
    assert regional.detail == "FL"

    typed = estimate_pitch({"building": "warehouse"})
    assert (typed.degrees, typed.source) == (3, "building-type")

    default = estimate_pitch()
    assert (default.degrees, default.source) == (DEFAULT_PITCH_DEGREES, "default")
