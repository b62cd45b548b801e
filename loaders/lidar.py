"""
LiDAR Loader - Roof measurements from the Instant Roofer API.

Requires INSTANT_ROOFER_API_KEY. The response is mapped onto
LidarMeasurement without any recalculation.
"""

import logging
import os
from datetime import date
from typing import Dict, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.exceptions import AdapterUnavailableError
from loaders.contracts import LidarAdapter, LidarMeasurement

log = logging.getLogger(__name__)

SOURCE_NAME = "Instant Roofer"


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


class InstantRooferLoader(LidarAdapter):
    """
    LiDAR measurements by coordinate.

    Usage:
        loader = InstantRooferLoader()
        lidar = loader.fetch_lidar(42.3601, -71.0589)
    """

    API_URL = "https://api.instantroofer.com/v1/measurements"

    def __init__(self, api_key: Optional[str] = None, timeout: float = 15.0):
        self.api_key = api_key or os.environ.get("INSTANT_ROOFER_API_KEY")
        self.timeout = timeout
        self.session = requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def _make_request(self, lat: float, lng: float, timeout: float) -> Optional[Dict]:
        response = self.session.get(
            self.API_URL,
            params={"lat": lat, "lng": lng},
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def fetch_lidar(self, lat: float, lng: float, timeout: Optional[float] = None) -> Optional[LidarMeasurement]:
        if not self.api_key:
            raise AdapterUnavailableError(SOURCE_NAME, "API key not configured")

        try:
            data = self._make_request(lat, lng, timeout or self.timeout)
        except requests.RequestException as e:
            log.warning(f"Instant Roofer request failed for ({lat:.5f}, {lng:.5f}): {e}")
            raise AdapterUnavailableError(SOURCE_NAME, str(e)) from e

        if not data or not data.get("totalAreaSqFt"):
            log.debug(f"No LiDAR data at ({lat:.5f}, {lng:.5f})")
            return None

        return LidarMeasurement(
            total_area_sqm=float(data.get("totalAreaSqM") or 0),
            total_area_sqft=float(data.get("totalAreaSqFt") or 0),
            adjusted_area_sqft=float(data.get("adjustedAreaSqFt") or 0),
            pitch_degrees=float(data.get("pitchDegrees") or 0),
            pitch_multiplier=float(data.get("pitchMultiplier") or 1),
            segment_count=int(data.get("segmentCount") or 1),
            imagery_date=_parse_date(data.get("imageryDate")),
        )


# Singleton
_loader: Optional[InstantRooferLoader] = None


def get_lidar_loader() -> InstantRooferLoader:
    """Get singleton LiDAR loader."""
    global _loader
    if _loader is None:
        _loader = InstantRooferLoader()
    return _loader
