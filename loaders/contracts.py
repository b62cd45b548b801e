"""
Adapter contracts for measurement and imagery sources.

Every fetch takes (lat, lng, timeout) and follows the same convention:

- returns None when the source answered but has nothing at the location
- raises AdapterUnavailableError when it is not configured or unreachable

Callers (the tiered resolver, the imagery manager) treat any other exception
the same way as AdapterUnavailableError.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from core.models import BuildingFootprint, ImageryQuality, ImagerySource, LatLon


# ═══════════════════════════════════════════════════════════════════════════
# PROVIDER PAYLOADS
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class LidarMeasurement:
    """Areas as reported by the LiDAR provider."""
    total_area_sqm: float
    total_area_sqft: float
    adjusted_area_sqft: float
    pitch_degrees: float
    pitch_multiplier: float = 1.0
    segment_count: int = 1
    imagery_date: Optional[date] = None


@dataclass
class RoofSegmentStat:
    pitch_degrees: float
    area_sqm: float  # sloped surface area
    azimuth_degrees: Optional[float] = None


@dataclass
class SolarBuildingInsights:
    """The subset of a Solar buildingInsights response we measure from."""
    imagery_quality: ImageryQuality
    segments: List[RoofSegmentStat] = field(default_factory=list)
    imagery_date: Optional[date] = None
    center: Optional[LatLon] = None


@dataclass
class TracedPolygon:
    """Output of an external image tracer."""
    vertices: List[LatLon]
    confidence: float
    zoom: int = 20


@dataclass
class ImageryFetchOptions:
    zoom: int = 20
    max_cloud_cover: float = 20.0
    include_archive: bool = False
    max_age: str = "1year"  # "current" (30 days), "1year", "5year"
    per_source_timeout: float = 15.0

    @property
    def max_age_days(self) -> int:
        return {"current": 30, "1year": 365, "5year": 5 * 365}.get(self.max_age, 365)


# ═══════════════════════════════════════════════════════════════════════════
# ADAPTERS
# ═══════════════════════════════════════════════════════════════════════════
class LidarAdapter(ABC):
    @abstractmethod
    def fetch_lidar(self, lat: float, lng: float, timeout: Optional[float] = None) -> Optional[LidarMeasurement]:
        ...


class SolarAdapter(ABC):
    @abstractmethod
    def fetch_solar(self, lat: float, lng: float, timeout: Optional[float] = None) -> Optional[SolarBuildingInsights]:
        ...


class FootprintAdapter(ABC):
    """Building outline closest to a point (OSM, Microsoft, auto-trace)."""

    @abstractmethod
    def fetch_footprint(self, lat: float, lng: float, timeout: Optional[float] = None) -> Optional[BuildingFootprint]:
        ...


class ElevationAdapter(ABC):
    @abstractmethod
    def fetch_elevation(self, lat: float, lng: float, timeout: Optional[float] = None) -> Optional[float]:
        """Ground elevation in meters."""


class ImageryProvider(ABC):
    """One imagery provider in the multi-source set."""

    # Display name used in "<name> unavailable" quality flags
    name: str = "Imagery provider"

    @abstractmethod
    def fetch_imagery(
        self,
        lat: float,
        lng: float,
        timeout: Optional[float] = None,
        options: Optional[ImageryFetchOptions] = None,
    ) -> Optional[ImagerySource]:
        ...
