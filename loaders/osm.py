"""
OpenStreetMap Building Loader via Overpass API.

Fetches building outlines (with roof:shape / roof:angle / building tags)
around a point and returns the building whose centroid is closest.

- Rate limiting (per Overpass API guidelines)
- SQLite caching of raw responses
- Retry with exponential backoff
"""

import hashlib
import json
import logging
import math
import sqlite3
import time
from typing import Dict, List, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.exceptions import AdapterUnavailableError
from core.geometry import centroid, open_ring, polygon_area
from core.models import SQM_TO_SQFT, BuildingFootprint, LatLon
from loaders.contracts import FootprintAdapter

log = logging.getLogger(__name__)

# Rate limiter - Overpass is generous but we should be respectful
_last_request_time = 0.0
_MIN_REQUEST_INTERVAL = 2.0  # 2 seconds between requests

SOURCE_NAME = "OpenStreetMap"
OSM_FOOTPRINT_CONFIDENCE = 70
CACHE_TTL_SECONDS = 30 * 24 * 60 * 60


class OSMCache:
    """SQLite cache for Overpass API results."""

    def __init__(self, db_path: str = "osm_cache.db"):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS osm_cache (
                query_hash TEXT PRIMARY KEY,
                result_json TEXT,
                created_at REAL
            )
        """)
        conn.execute(
            "DELETE FROM osm_cache WHERE created_at < ?",
            (time.time() - CACHE_TTL_SECONDS,),
        )
        conn.commit()
        conn.close()

    def _hash_query(self, lat: float, lon: float, radius: int) -> str:
        # ~1m precision; buildings are small
        key = f"{lat:.5f},{lon:.5f},{radius}"
        return hashlib.md5(key.encode()).hexdigest()

    def get(self, lat: float, lon: float, radius: int) -> Optional[Dict]:
        conn = sqlite3.connect(self.db_path)
        row = conn.execute(
            "SELECT result_json FROM osm_cache WHERE query_hash = ?",
            (self._hash_query(lat, lon, radius),)
        ).fetchone()
        conn.close()
        if row:
            return json.loads(row[0])
        return None

    def set(self, lat: float, lon: float, radius: int, result: Dict):
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            """INSERT OR REPLACE INTO osm_cache
               (query_hash, result_json, created_at)
               VALUES (?, ?, ?)""",
            (self._hash_query(lat, lon, radius), json.dumps(result), time.time())
        )
        conn.commit()
        conn.close()


def element_ring(element: Dict) -> List[LatLon]:
    """Outline of an Overpass element from `out geom` output."""
    geometry = element.get("geometry")
    if geometry:
        return open_ring([(p["lat"], p["lon"]) for p in geometry])

    # Relations carry their outline on the outer member
    for member in element.get("members", []):
        if member.get("role") == "outer" and member.get("geometry"):
            return open_ring([(p["lat"], p["lon"]) for p in member["geometry"]])

    return []


def closest_building(elements: List[Dict], lat: float, lon: float) -> Optional[Dict]:
    """Element whose outline centroid is nearest the point (planar degrees)."""
    best = None
    min_distance = math.inf
    for element in elements:
        ring = element_ring(element)
        if len(ring) < 3:
            continue
        c_lat, c_lon = centroid(ring)
        distance = math.hypot(c_lat - lat, c_lon - lon)
        if distance < min_distance:
            min_distance = distance
            best = element
    return best


class OSMBuildingLoader(FootprintAdapter):
    """
    Building footprints from OpenStreetMap.

    Usage:
        loader = OSMBuildingLoader()
        footprint = loader.fetch_footprint(42.3601, -71.0589)
        print(footprint.area_sqft, footprint.tags.get("roof:shape"))
    """

    OVERPASS_URL = "https://overpass-api.de/api/interpreter"

    def __init__(self, cache_path: str = "osm_cache.db", timeout: int = 25, radius: int = 50):
        self.cache = OSMCache(cache_path)
        self.timeout = timeout
        self.radius = radius
        self.session = requests.Session()

    def _rate_limit(self):
        """Ensure we don't exceed rate limits."""
        global _last_request_time
        elapsed = time.time() - _last_request_time
        if elapsed < _MIN_REQUEST_INTERVAL:
            time.sleep(_MIN_REQUEST_INTERVAL - elapsed)
        _last_request_time = time.time()

    def _build_query(self, lat: float, lon: float, radius: int) -> str:
        """Buildings (ways and multipolygon relations) with full tags and geometry."""
        return f"""
        [out:json][timeout:{self.timeout}];
        (
          way(around:{radius},{lat},{lon})["building"];
          relation(around:{radius},{lat},{lon})["building"];
        );
        out body geom;
        """

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def _make_request(self, query: str, timeout: float) -> Dict:
        """Make a rate-limited request with retry."""
        self._rate_limit()
        response = self.session.post(
            self.OVERPASS_URL,
            data={"data": query},
            timeout=timeout,
        )
        response.raise_for_status()
        return response.json()

    def fetch_raw(self, lat: float, lon: float, radius: Optional[int] = None, timeout: Optional[float] = None) -> Dict:
        """
        Fetch raw building elements around a point.

        Args:
            lat: Center latitude
            lon: Center longitude
            radius: Search radius in meters
            timeout: Request timeout in seconds

        Returns:
            Raw Overpass API response

        Raises:
            AdapterUnavailableError: Overpass could not be reached
        """
        radius = radius or self.radius

        cached = self.cache.get(lat, lon, radius)
        if cached is not None:
            log.debug(f"Cache hit for OSM at ({lat}, {lon})")
            return cached

        query = self._build_query(lat, lon, radius)
        try:
            data = self._make_request(query, timeout or self.timeout)
        except requests.RequestException as e:
            log.warning(f"OSM request failed: {e}")
            raise AdapterUnavailableError(SOURCE_NAME, str(e)) from e

        self.cache.set(lat, lon, radius, data)
        log.info(f"OSM fetched {len(data.get('elements', []))} buildings at ({lat:.4f}, {lon:.4f})")
        return data

    def fetch_footprint(self, lat: float, lng: float, timeout: Optional[float] = None) -> Optional[BuildingFootprint]:
        raw = self.fetch_raw(lat, lng, timeout=timeout)
        building = closest_building(raw.get("elements", []), lat, lng)
        if building is None:
            return None

        ring = element_ring(building)
        area_sqm = polygon_area(ring)
        if area_sqm <= 0:
            return None

        return BuildingFootprint(
            geometry=ring,
            area_sqm=area_sqm,
            area_sqft=area_sqm * SQM_TO_SQFT,
            source="osm",
            confidence=OSM_FOOTPRINT_CONFIDENCE,
            tags=dict(building.get("tags", {})),
        )


# Singleton
_loader: Optional[OSMBuildingLoader] = None


def get_osm_loader() -> OSMBuildingLoader:
    """Get singleton OSM loader."""
    global _loader
    if _loader is None:
        _loader = OSMBuildingLoader()
    return _loader
