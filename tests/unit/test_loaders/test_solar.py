import pytest
import requests
from datetime import date
from unittest.mock import MagicMock, patch

from core.exceptions import AdapterUnavailableError
from core.models import ImageryQuality
from loaders.solar import GoogleSolarLoader, parse_building_insights, parse_imagery_date

SAMPLE_INSIGHTS = {
    "center": {"latitude": 42.3601, "longitude": -71.0589},
    "imageryQuality": "MEDIUM",
    "imageryDate": {"year": 2022, "month": 8, "day": 14},
    "solarPotential": {
        "roofSegmentStats": [
            {"pitchDegrees": 30.0, "azimuthDegrees": 180.0, "stats": {"areaMeters2": 60.0}},
            {"pitchDegrees": 20.0, "azimuthDegrees": 0.0, "stats": {"areaMeters2": 40.0}},
        ]
    },
}


@pytest.fixture
def mock_loader():
    with patch('requests.Session') as mock_session:
        loader = GoogleSolarLoader(api_key="test-key")
        loader.session = mock_session.return_value
        yield loader


def test_parse_building_insights():
    insights = parse_building_insights(SAMPLE_INSIGHTS)

    assert insights.imagery_quality == ImageryQuality.MEDIUM
    assert insights.imagery_date == date(2022, 8, 14)
    assert insights.center == (42.3601, -71.0589)
    assert [s.area_sqm for s in insights.segments] == [60.0, 40.0]
    assert insights.segments[0].azimuth_degrees == 180.0


def test_parse_without_segments_is_none():
    assert parse_building_insights({"imageryQuality": "HIGH"}) is None


def test_parse_imagery_date_incomplete():
    assert parse_imagery_date({"year": 2022, "month": 8}) is None
    assert parse_imagery_date(None) is None


def test_fetch_solar(mock_loader):
    mock_response = MagicMock()
    mock_response.status_code = 200
    mock_response.json.return_value = SAMPLE_INSIGHTS
    mock_loader.session.get.return_value = mock_response

    insights = mock_loader.fetch_solar(42.3601, -71.0589, timeout=5)

    assert len(insights.segments) == 2
    _, kwargs = mock_loader.session.get.call_args
    assert kwargs["params"]["location.latitude"] == 42.3601
    assert kwargs["params"]["key"] == "test-key"
    assert kwargs["timeout"] == 5


def test_fetch_solar_not_found(mock_loader):
    mock_response = MagicMock()
    mock_response.status_code = 404
    mock_loader.session.get.return_value = mock_response

    assert mock_loader.fetch_solar(0.0, 0.0) is None


def test_fetch_solar_unconfigured(monkeypatch):
    monkeypatch.delenv("GOOGLE_SOLAR_API_KEY", raising=False)
    with pytest.raises(AdapterUnavailableError):
        GoogleSolarLoader().fetch_solar(42.0, -71.0)


def test_fetch_solar_http_error(mock_loader):
    mock_response = MagicMock()
    mock_response.status_code = 500
    mock_response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
    mock_loader.session.get.return_value = mock_response

    with pytest.raises(AdapterUnavailableError):
        mock_loader.fetch_solar(42.0, -71.0)
