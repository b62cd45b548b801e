"""
Google Solar Loader - Roof segments from buildingInsights:findClosest.

The Solar API reports sloped roof-segment areas plus an imagery quality
(HIGH / MEDIUM / LOW). One call feeds resolver tiers 2-4.

Requires GOOGLE_SOLAR_API_KEY.
"""

import logging
import os
from datetime import date
from typing import Dict, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.exceptions import AdapterUnavailableError
from core.models import ImageryQuality
from loaders.contracts import RoofSegmentStat, SolarAdapter, SolarBuildingInsights

log = logging.getLogger(__name__)

SOURCE_NAME = "Google Solar API"


def parse_imagery_date(value: Optional[Dict]) -> Optional[date]:
    """{"year": 2023, "month": 7, "day": 14} -> date, or None when incomplete."""
    if not value:
        return None
    try:
        return date(int(value["year"]), int(value["month"]), int(value["day"]))
    except (KeyError, TypeError, ValueError):
        return None


def parse_building_insights(data: Dict) -> Optional[SolarBuildingInsights]:
    """Map a buildingInsights response, or None when it has no roof segments."""
    stats = (data.get("solarPotential") or {}).get("roofSegmentStats") or []
    if not stats:
        return None

    segments = [
        RoofSegmentStat(
            pitch_degrees=float(seg.get("pitchDegrees") or 0),
            area_sqm=float((seg.get("stats") or {}).get("areaMeters2") or 0),
            azimuth_degrees=seg.get("azimuthDegrees"),
        )
        for seg in stats
    ]

    center = data.get("center")
    return SolarBuildingInsights(
        imagery_quality=ImageryQuality.parse(data.get("imageryQuality")),
        segments=segments,
        imagery_date=parse_imagery_date(data.get("imageryDate")),
        center=(center["latitude"], center["longitude"]) if center else None,
    )


class GoogleSolarLoader(SolarAdapter):
    """
    Building insights for the building closest to a point.

    Usage:
        loader = GoogleSolarLoader()
        insights = loader.fetch_solar(42.3601, -71.0589)
        print(insights.imagery_quality, len(insights.segments))
    """

    API_URL = "https://solar.googleapis.com/v1/buildingInsights:findClosest"

    def __init__(self, api_key: Optional[str] = None, timeout: float = 15.0):
        self.api_key = api_key or os.environ.get("GOOGLE_SOLAR_API_KEY")
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
            params={
                "location.latitude": lat,
                "location.longitude": lng,
                "requiredQuality": "LOW",
                "key": self.api_key,
            },
            timeout=timeout,
        )
        # NOT_FOUND means no building near the point
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def fetch_solar(self, lat: float, lng: float, timeout: Optional[float] = None) -> Optional[SolarBuildingInsights]:
        if not self.api_key:
            raise AdapterUnavailableError(SOURCE_NAME, "API key not configured")

        try:
            data = self._make_request(lat, lng, timeout or self.timeout)
        except requests.RequestException as e:
            log.warning(f"Solar request failed for ({lat:.5f}, {lng:.5f}): {e}")
            raise AdapterUnavailableError(SOURCE_NAME, str(e)) from e

        if not data:
            log.debug(f"No Solar building at ({lat:.5f}, {lng:.5f})")
            return None

        insights = parse_building_insights(data)
        if insights:
            log.info(
                f"Solar: {len(insights.segments)} segments, "
                f"{insights.imagery_quality.value} imagery at ({lat:.4f}, {lng:.4f})"
            )
        return insights


# Singleton
_loader: Optional[GoogleSolarLoader] = None


def get_solar_loader() -> GoogleSolarLoader:
    """Get singleton Solar loader."""
    global _loader
    if _loader is None:
        _loader = GoogleSolarLoader()
    return _loader
