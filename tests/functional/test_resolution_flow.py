"""
End-to-end resolution with the real loader classes; only the HTTP sessions
are mocked.
"""

import json
from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

import main
from core.models import MeasurementSource
from core.report import ReportAssembler
from core.resolver import MeasurementOptions, TieredResolver
from inference.calibrator import SelfLearningCalibrator
from inference.correction_store import SQLiteCorrectionStore
from loaders.lidar import InstantRooferLoader
from loaders.osm import OSMBuildingLoader
from loaders.solar import GoogleSolarLoader

LAT, LNG = 42.00005, -70.99995
NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)

OVERPASS_RESPONSE = {
    "elements": [
        {
            "type": "way",
            "id": 101,
            "geometry": [
                {"lat": 42.0, "lon": -71.0},
                {"lat": 42.0, "lon": -70.9999},
                {"lat": 42.0001, "lon": -70.9999},
                {"lat": 42.0001, "lon": -71.0},
                {"lat": 42.0, "lon": -71.0},
            ],
            "tags": {"building": "house", "roof:shape": "gabled"},
        }
    ]
}


@pytest.fixture
def resolver(tmp_path, monkeypatch):
    monkeypatch.delenv("INSTANT_ROOFER_API_KEY", raising=False)

    with patch('requests.Session'):
        lidar = InstantRooferLoader()
        solar = GoogleSolarLoader(api_key="test-key")
        osm = OSMBuildingLoader(cache_path=str(tmp_path / "osm.db"))

    solar.session = MagicMock()
    not_found = MagicMock()
    not_found.status_code = 404
    solar.session.get.return_value = not_found

    osm.session = MagicMock()
    overpass = MagicMock()
    overpass.json.return_value = OVERPASS_RESPONSE
    osm.session.post.return_value = overpass

    return TieredResolver(lidar=lidar, solar=solar, osm=osm)


@pytest.fixture
def calibrator(tmp_path):
    calibrator = SelfLearningCalibrator(SQLiteCorrectionStore(str(tmp_path / "cal.db")), now_fn=lambda: NOW)
    for _ in range(3):
        calibrator.learn(1100, 1000, "02134", confidence=90)
    return calibrator


def test_falls_through_to_osm(resolver):
    result = resolver.resolve(LAT, LNG)

    assert result.tier_used == 5
    assert result.measurement.source == MeasurementSource.OSM
    assert result.measurement.adjusted_area_sqft > result.measurement.footprint_area_sqft
    assert result.higher_tier_failures[0].tier == 1
    assert result.higher_tier_failures[0].reason == "Instant Roofer API key not configured"
    assert result.fallbacks_available == ["manual-tracing"]


def test_report_applies_stored_correction(resolver, calibrator):
    assembler = ReportAssembler(resolver, calibrator=calibrator)
    report = assembler.assemble(LAT, LNG, MeasurementOptions(region_key="02134"), as_of=date(2024, 6, 1))

    original = report.tiered.measurement.adjusted_area_sqft
    assert report.correction_applied is True
    assert report.measurement.adjusted_area_sqft == pytest.approx(original * 1.1)
    assert report.accuracy_range == "50-70%"


def test_repeat_lookups_hit_the_osm_cache(resolver):
    resolver.resolve(LAT, LNG)
    resolver.resolve(LAT, LNG)

    assert resolver.osm.session.post.call_count == 1


def test_cli_prints_json_report(resolver, tmp_path, capsys):
    store = str(tmp_path / "cli.db")
    with patch.object(main.TieredResolver, "from_environment", return_value=resolver):
        code = main.main(["--lat", str(LAT), "--lng", str(LNG), "--region", "02134", "--store", store, "--json"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["tiered"]["tier_used"] == 5
    assert payload["correction_applied"] is False
    assert payload["accuracy_prediction"]["has_local_data"] is False
