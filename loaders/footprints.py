"""
Microsoft Building Footprints Loader.

Queries the public MSBFP2 ArcGIS FeatureServer with a small envelope around
the point and returns the closest building outline. No API key required.
"""

import json
import logging
import math
from typing import Dict, List, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.exceptions import AdapterUnavailableError
from core.geometry import centroid, open_ring, polygon_area
from core.models import SQM_TO_SQFT, BuildingFootprint, LatLon
from loaders.contracts import FootprintAdapter

log = logging.getLogger(__name__)

SOURCE_NAME = "Microsoft Building Footprints"
SEARCH_BUFFER_DEGREES = 0.0003  # ~30m
MICROSOFT_FOOTPRINT_CONFIDENCE = 85


def feature_ring(feature: Dict) -> List[LatLon]:
    """First ring of an esri polygon, converted from [lng, lat] to (lat, lon)."""
    rings = (feature.get("geometry") or {}).get("rings") or []
    if not rings or not rings[0]:
        return []
    return open_ring([(coord[1], coord[0]) for coord in rings[0]])


class MicrosoftFootprintLoader(FootprintAdapter):
    """
    Building outlines from Microsoft's ML-derived footprint dataset.

    Usage:
        loader = MicrosoftFootprintLoader()
        footprint = loader.fetch_footprint(42.3601, -71.0589)
    """

    QUERY_URL = (
        "https://services.arcgis.com/P3ePLMYs2RVChkJx/arcgis/rest/services/"
        "MSBFP2/FeatureServer/0/query"
    )

    def __init__(self, timeout: float = 15.0, buffer_degrees: float = SEARCH_BUFFER_DEGREES):
        self.timeout = timeout
        self.buffer_degrees = buffer_degrees
        self.session = requests.Session()

    def _build_params(self, lat: float, lng: float) -> Dict[str, str]:
        envelope = {
            "xmin": lng - self.buffer_degrees,
            "ymin": lat - self.buffer_degrees,
            "xmax": lng + self.buffer_degrees,
            "ymax": lat + self.buffer_degrees,
            "spatialReference": {"wkid": 4326},
        }
        return {
            "where": "1=1",
            "geometry": json.dumps(envelope),
            "geometryType": "esriGeometryEnvelope",
            "spatialRel": "esriSpatialRelIntersects",
            "outFields": "*",
            "returnGeometry": "true",
            "outSR": "4326",
            "f": "json",
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def _make_request(self, params: Dict[str, str], timeout: float) -> Dict:
        response = self.session.get(
            self.QUERY_URL,
            params=params,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()
        return response.json()

    def fetch_footprint(self, lat: float, lng: float, timeout: Optional[float] = None) -> Optional[BuildingFootprint]:
        try:
            data = self._make_request(self._build_params(lat, lng), timeout or self.timeout)
        except requests.RequestException as e:
            log.warning(f"Microsoft footprint query failed for ({lat:.5f}, {lng:.5f}): {e}")
            raise AdapterUnavailableError(SOURCE_NAME, str(e)) from e

        # ArcGIS reports query errors with HTTP 200
        if "error" in data:
            message = data["error"].get("message", "query error")
            raise AdapterUnavailableError(SOURCE_NAME, message)

        best_ring: List[LatLon] = []
        min_distance = math.inf
        for feature in data.get("features", []):
            ring = feature_ring(feature)
            if len(ring) < 3:
                continue
            c_lat, c_lon = centroid(ring)
            distance = math.hypot(c_lat - lat, c_lon - lng)
            if distance < min_distance:
                min_distance = distance
                best_ring = ring

        if not best_ring:
            log.debug(f"No Microsoft footprint at ({lat:.5f}, {lng:.5f})")
            return None

        area_sqm = polygon_area(best_ring)
        return BuildingFootprint(
            geometry=best_ring,
            area_sqm=area_sqm,
            area_sqft=area_sqm * SQM_TO_SQFT,
            source="microsoft",
            confidence=MICROSOFT_FOOTPRINT_CONFIDENCE,
        )


# Singleton
_loader: Optional[MicrosoftFootprintLoader] = None


def get_footprint_loader() -> MicrosoftFootprintLoader:
    """Get singleton Microsoft footprint loader."""
    global _loader
    if _loader is None:
        _loader = MicrosoftFootprintLoader()
    return _loader
