import pytest
import requests
from unittest.mock import MagicMock, patch

from core.exceptions import AdapterUnavailableError
from loaders.elevation import ElevationLoader, NO_DATA_VALUE


@pytest.fixture
def mock_loader(tmp_path):
    cache_path = str(tmp_path / "test_elevation.db")
    with patch('requests.Session') as mock_session:
        loader = ElevationLoader(cache_path=cache_path)
        loader.session = mock_session.return_value
        yield loader


def test_get_elevation_success(mock_loader):
    mock_response = MagicMock()
    mock_response.json.return_value = {"value": 42.5}
    mock_loader.session.get.return_value = mock_response

    result = mock_loader.get_elevation(37.0, -122.0)

    assert result.elevation_meters == 42.5
    assert result.data_source == "USGS_3DEP"
    _, kwargs = mock_loader.session.get.call_args
    assert kwargs["params"]["x"] == -122.0
    assert kwargs["params"]["y"] == 37.0


def test_no_data_value(mock_loader):
    mock_response = MagicMock()
    mock_response.json.return_value = {"value": NO_DATA_VALUE}
    mock_loader.session.get.return_value = mock_response

    assert mock_loader.get_elevation(37.0, -122.0) is None


def test_malformed_value(mock_loader):
    mock_response = MagicMock()
    mock_response.json.return_value = {"value": "n/a"}
    mock_loader.session.get.return_value = mock_response

    assert mock_loader.fetch_elevation(37.0, -122.0) is None


def test_caching(mock_loader):
    mock_response = MagicMock()
    mock_response.json.return_value = {"value": 10.0}
    mock_loader.session.get.return_value = mock_response

    assert mock_loader.fetch_elevation(37.0, -122.0) == 10.0
    assert mock_loader.fetch_elevation(37.0, -122.0) == 10.0
    assert mock_loader.session.get.call_count == 1


def test_request_failure(mock_loader):
    mock_loader.session.get.side_effect = requests.ConnectionError("down")

    with pytest.raises(AdapterUnavailableError):
        mock_loader.fetch_elevation(37.0, -122.0)
