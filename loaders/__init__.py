"""
Data loaders for the Roof Measurement Engine.

Includes:
- LiDAR (Instant Roofer)
- Roof segments (Google Solar API)
- Building footprints (OpenStreetMap Overpass, Microsoft, auto-trace)
- Elevation (USGS)

Imagery providers live in loaders.imagery.
"""

from loaders.contracts import (
    ElevationAdapter,
    FootprintAdapter,
    ImageryFetchOptions,
    ImageryProvider,
    LidarAdapter,
    SolarAdapter,
)
from loaders.lidar import InstantRooferLoader, get_lidar_loader
from loaders.solar import GoogleSolarLoader, get_solar_loader
from loaders.osm import OSMBuildingLoader, get_osm_loader
from loaders.footprints import MicrosoftFootprintLoader, get_footprint_loader
from loaders.elevation import ElevationLoader, ElevationResult, get_elevation_loader
from loaders.auto_trace import AutoTraceLoader, ImageTracer

__all__ = [
    # Contracts
    "ElevationAdapter",
    "FootprintAdapter",
    "ImageryFetchOptions",
    "ImageryProvider",
    "LidarAdapter",
    "SolarAdapter",
    # Loaders
    "InstantRooferLoader",
    "get_lidar_loader",
    "GoogleSolarLoader",
    "get_solar_loader",
    "OSMBuildingLoader",
    "get_osm_loader",
    "MicrosoftFootprintLoader",
    "get_footprint_loader",
    "ElevationLoader",
    "ElevationResult",
    "get_elevation_loader",
    "AutoTraceLoader",
    "ImageTracer",
]
