import pytest
from datetime import date
from unittest.mock import MagicMock, patch

from core.exceptions import AdapterUnavailableError
from core.models import BuildingFootprint, ImageryQuality, ImagerySource
from loaders.contracts import ImageryFetchOptions, ImageryProvider
from loaders.imagery import (
    BingMapsProvider,
    GoogleStaticMapsProvider,
    ImagerySourceManager,
    Sentinel2Provider,
    USGSBuildingProvider,
    resolution_for_zoom,
)

TODAY = date(2024, 7, 1)


def _source(provider, area=None, quality=ImageryQuality.HIGH, capture_date=None, resolution=0.149, cloud=None):
    footprint = None
    if area is not None:
        footprint = BuildingFootprint(geometry=[], area_sqm=area / 10.7639, area_sqft=area, source=provider, confidence=80)
    return ImagerySource(
        provider=provider,
        image_url=f"https://example.com/{provider}.png",
        capture_date=capture_date,
        resolution_meters_per_pixel=resolution,
        quality=quality,
        cloud_cover_percent=cloud,
        footprint=footprint,
    )


class StaticProvider(ImageryProvider):
    def __init__(self, name, result=None, error=None):
        self.name = name
        self.result = result
        self.error = error

    def fetch_imagery(self, lat, lng, timeout=None, options=None):
        if self.error:
            raise self.error
        return self.result


def test_resolution_for_zoom():
    assert resolution_for_zoom(20) == pytest.approx(0.149)
    assert resolution_for_zoom(19) == pytest.approx(0.298)


def test_google_requires_key(monkeypatch):
    monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_SOLAR_API_KEY", raising=False)
    with pytest.raises(AdapterUnavailableError):
        GoogleStaticMapsProvider().fetch_imagery(42.0, -71.0)


def test_google_quality_from_zoom():
    provider = GoogleStaticMapsProvider(api_key="k")
    source = provider.fetch_imagery(42.0, -71.0, options=ImageryFetchOptions(zoom=19))
    assert source.provider == "google"
    assert source.quality == ImageryQuality.MEDIUM
    assert source.capture_date is None
    assert "zoom=19" in source.image_url


def test_bing_vintage_metadata():
    with patch('requests.Session') as mock_session:
        provider = BingMapsProvider(api_key="k")
        provider.session = mock_session.return_value
    mock_response = MagicMock()
    mock_response.json.return_value = {
        "resourceSets": [{"resources": [{"vintageStart": "2021-04-01", "vintageEnd": "2021-05-30"}]}]
    }
    provider.session.get.return_value = mock_response

    source = provider.fetch_imagery(42.0, -71.0)

    assert source.capture_date == date(2021, 4, 1)
    assert source.quality == ImageryQuality.HIGH
    assert source.metadata["vintage_end"] == "2021-05-30"


def test_usgs_wraps_footprint():
    footprints = MagicMock()
    footprints.fetch_footprint.return_value = BuildingFootprint(
        geometry=[], area_sqm=100.0, area_sqft=1076.39, source="microsoft", confidence=85
    )
    source = USGSBuildingProvider(footprints).fetch_imagery(42.0, -71.0)
    assert source.provider == "usgs"
    assert source.footprint_area_sqft == pytest.approx(1076.39)


def test_sentinel_requires_credentials(monkeypatch):
    monkeypatch.delenv("COPERNICUS_USERNAME", raising=False)
    monkeypatch.delenv("COPERNICUS_PASSWORD", raising=False)
    with pytest.raises(AdapterUnavailableError):
        Sentinel2Provider().fetch_window(42.0, -71.0, date(2024, 1, 1), date(2024, 2, 1))


def test_sentinel_fetch_window():
    with patch('requests.Session') as mock_session:
        provider = Sentinel2Provider(username="u", password="p")
        provider.session = mock_session.return_value
    mock_response = MagicMock()
    mock_response.json.return_value = {"value": [{
        "Id": "abc",
        "Name": "S2A_MSIL2A_20240601",
        "ContentDate": {"Start": "2024-06-01T10:00:00.000Z"},
        "Attributes": [{"Name": "cloudCover", "Value": 3.2}],
    }]}
    provider.session.get.return_value = mock_response

    source = provider.fetch_window(42.0, -71.0, date(2024, 5, 15), date(2024, 6, 15))

    assert source.capture_date == date(2024, 6, 1)
    assert source.quality == ImageryQuality.HIGH
    assert source.cloud_cover_percent == 3.2
    assert source.shadow_quality == "moderate"
    assert source.metadata["platform"] == "Sentinel-2A"
    assert source.metadata["processing_level"] == "L2A"
    _, kwargs = provider.session.get.call_args
    assert "le 20" in kwargs["params"]["$filter"]


def test_sentinel_no_products():
    with patch('requests.Session') as mock_session:
        provider = Sentinel2Provider(username="u", password="p")
        provider.session = mock_session.return_value
    mock_response = MagicMock()
    mock_response.json.return_value = {"value": []}
    provider.session.get.return_value = mock_response

    assert provider.fetch_window(42.0, -71.0, date(2024, 1, 1), date(2024, 2, 1)) is None


def test_score_source():
    manager = ImagerySourceManager(providers=[])
    assert manager.score_source(_source("google"), TODAY) == pytest.approx(80.0)


def test_select_best_prefers_recent_high_quality():
    manager = ImagerySourceManager(providers=[])
    old = _source("bing", quality=ImageryQuality.LOW, capture_date=date(2019, 1, 1), resolution=0.3)
    fresh = _source("sentinel", quality=ImageryQuality.HIGH, capture_date=date(2024, 6, 20), resolution=0.3, cloud=2)

    result = manager.select_best([old, fresh], TODAY)

    assert result.selected_source is fresh
    assert result.alternative_sources == [old]
    assert "Recent imagery (< 30 days old)" in result.reasoning
    assert "Low cloud cover" in result.reasoning


def test_select_best_single_and_empty():
    manager = ImagerySourceManager(providers=[])
    only = _source("google")
    assert manager.select_best([only]).reasoning == ["Only one source available: google"]
    with pytest.raises(ValueError):
        manager.select_best([])


def test_identify_quality_flags():
    manager = ImagerySourceManager(providers=[])
    poor = _source("sentinel", quality=ImageryQuality.LOW, capture_date=date(2020, 1, 1), resolution=10.0, cloud=45)
    poor.shadow_quality = "poor"

    flags = manager.identify_quality_flags([poor], TODAY)

    assert "sentinel: Imagery is over 2 years old" in flags
    assert "sentinel: High cloud cover (45.0%)" in flags
    assert "sentinel: Low resolution (10m/pixel)" in flags
    assert "sentinel: Poor shadow quality may affect accuracy" in flags
    assert "No high-quality imagery available" in flags


def test_fetch_all_flags_failures_and_keeps_order():
    providers = [
        StaticProvider("Google Static Maps", _source("google", area=1000)),
        StaticProvider("Bing Maps", error=AdapterUnavailableError("Bing Maps", "API key not configured")),
        StaticProvider("USGS building data", _source("usgs", area=1020)),
        StaticProvider("Sentinel-2 imagery", None),
    ]
    manager = ImagerySourceManager(providers=providers)

    imagery = manager.fetch_all(42.0, -71.0)

    assert [s.provider for s in imagery.sources] == ["google", "usgs"]
    assert "Bing Maps unavailable" in imagery.quality_flags
    assert imagery.footprint_variance_percent < 15
    assert imagery.recommended_primary is not None


def test_fetch_all_flags_outliers_and_variance():
    providers = [
        StaticProvider(f"p{i}", _source(f"p{i}", area=area))
        for i, area in enumerate([1000, 1005, 1010, 1020, 3000])
    ]
    imagery = ImagerySourceManager(providers=providers).fetch_all(42.0, -71.0)

    assert "Outlier sources: p4" in imagery.quality_flags
    assert any(f.startswith("High variance between sources") for f in imagery.quality_flags)


def test_fetch_all_nothing_available():
    manager = ImagerySourceManager(providers=[StaticProvider("Only", error=RuntimeError("x"))])
    imagery = manager.fetch_all(42.0, -71.0)
    assert imagery.sources == []
    assert imagery.recommended_primary is None
    assert "No imagery sources available for this location" in imagery.quality_flags
