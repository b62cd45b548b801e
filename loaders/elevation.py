"""
Elevation Loader - Fetch ground elevation from USGS 3DEP.

Uses the USGS Elevation Point Query Service. Free, no API key required.
"""

import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Dict, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.exceptions import AdapterUnavailableError
from loaders.contracts import ElevationAdapter

log = logging.getLogger(__name__)

# Rate limiter
_last_request_time = 0.0
_MIN_REQUEST_INTERVAL = 0.2  # 5 requests per second max

SOURCE_NAME = "USGS 3DEP"
NO_DATA_VALUE = -1000000


@dataclass
class ElevationResult:
    """Elevation data for a point."""
    latitude: float
    longitude: float
    elevation_meters: float
    data_source: str
    resolution_meters: float


class ElevationCache:
    """SQLite cache for elevation data."""

    def __init__(self, db_path: str = "elevation_cache.db"):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS elevation_cache (
                lat_lon_key TEXT PRIMARY KEY,
                elevation_m REAL,
                data_source TEXT,
                resolution_m REAL,
                created_at REAL
            )
        """)
        conn.commit()
        conn.close()

    def _make_key(self, lat: float, lon: float) -> str:
        # Round to 5 decimal places (~1m precision)
        return f"{lat:.5f},{lon:.5f}"

    def get(self, lat: float, lon: float) -> Optional[ElevationResult]:
        conn = sqlite3.connect(self.db_path)
        row = conn.execute(
            "SELECT elevation_m, data_source, resolution_m FROM elevation_cache WHERE lat_lon_key = ?",
            (self._make_key(lat, lon),)
        ).fetchone()
        conn.close()
        if row:
            return ElevationResult(lat, lon, row[0], row[1], row[2])
        return None

    def set(self, result: ElevationResult):
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            """INSERT OR REPLACE INTO elevation_cache
               (lat_lon_key, elevation_m, data_source, resolution_m, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (self._make_key(result.latitude, result.longitude),
             result.elevation_meters, result.data_source,
             result.resolution_meters, time.time())
        )
        conn.commit()
        conn.close()


class ElevationLoader(ElevationAdapter):
    """
    Fetch elevation data from the USGS National Map.

    API Documentation:
    https://apps.nationalmap.gov/epqs/
    """

    USGS_URL = "https://epqs.nationalmap.gov/v1/json"

    def __init__(self, cache_path: str = "elevation_cache.db", timeout: float = 10.0):
        self.cache = ElevationCache(cache_path)
        self.timeout = timeout
        self.session = requests.Session()

    def _rate_limit(self):
        """Ensure we don't exceed rate limits."""
        global _last_request_time
        elapsed = time.time() - _last_request_time
        if elapsed < _MIN_REQUEST_INTERVAL:
            time.sleep(_MIN_REQUEST_INTERVAL - elapsed)
        _last_request_time = time.time()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def _make_request(self, lat: float, lon: float, timeout: float) -> Dict:
        self._rate_limit()
        response = self.session.get(
            self.USGS_URL,
            params={"x": lon, "y": lat, "units": "Meters", "wkid": 4326},
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()
        return response.json()

    def get_elevation(self, lat: float, lon: float, timeout: Optional[float] = None) -> Optional[ElevationResult]:
        """
        Get elevation for a single point.

        Args:
            lat: Latitude (US coverage)
            lon: Longitude (US coverage)
            timeout: Request timeout in seconds

        Returns:
            ElevationResult or None if the point has no data
        """
        cached = self.cache.get(lat, lon)
        if cached:
            return cached

        try:
            data = self._make_request(lat, lon, timeout or self.timeout)
        except requests.RequestException as e:
            log.warning(f"Elevation request failed for ({lat}, {lon}): {e}")
            raise AdapterUnavailableError(SOURCE_NAME, str(e)) from e

        try:
            elevation = float(data["value"])
        except (KeyError, ValueError, TypeError):
            log.debug(f"No elevation value for ({lat}, {lon})")
            return None

        if elevation <= NO_DATA_VALUE:
            log.debug(f"No elevation data for ({lat}, {lon})")
            return None

        result = ElevationResult(
            latitude=lat,
            longitude=lon,
            elevation_meters=elevation,
            data_source="USGS_3DEP",
            resolution_meters=10.0,  # 1/3 arc-second
        )
        self.cache.set(result)
        log.debug(f"Elevation at ({lat:.4f}, {lon:.4f}): {elevation:.1f}m")
        return result

    def fetch_elevation(self, lat: float, lng: float, timeout: Optional[float] = None) -> Optional[float]:
        result = self.get_elevation(lat, lng, timeout=timeout)
        return result.elevation_meters if result else None


# Singleton
_loader: Optional[ElevationLoader] = None


def get_elevation_loader() -> ElevationLoader:
    """Get singleton elevation loader."""
    global _loader
    if _loader is None:
        _loader = ElevationLoader()
    return _loader
