"""
Auto-Trace Loader - building outlines traced from satellite imagery.

The edge/contour extraction itself is delegated to an ImageTracer. This
module owns everything around it: image scale, outline cleanup, the
comparison against a reference footprint, and the confidence score.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import List, Optional

from core.exceptions import AdapterUnavailableError
from core.geometry import open_ring, polygon_area, simplify
from core.models import SQM_TO_SQFT, BuildingFootprint, LatLon
from loaders.contracts import FootprintAdapter, TracedPolygon

log = logging.getLogger(__name__)

SOURCE_NAME = "Auto-trace"

# Web-mercator ground resolution at the equator
METERS_PER_PIXEL_AT_ZOOM = {
    18: 0.597,
    19: 0.298,
    20: 0.149,
    21: 0.075,
    22: 0.037,
}
DEFAULT_ZOOM = 20
SIMPLIFY_TOLERANCE_M = 2.0

BASE_CONFIDENCE = 75
MIN_CONFIDENCE = 50
MAX_CONFIDENCE = 90


def meters_per_pixel(lat: float, zoom: int = DEFAULT_ZOOM) -> float:
    """Ground resolution at a latitude; unknown zooms fall back to zoom 20."""
    base = METERS_PER_PIXEL_AT_ZOOM.get(zoom, METERS_PER_PIXEL_AT_ZOOM[DEFAULT_ZOOM])
    return base / math.cos(math.radians(lat))


def auto_trace_confidence(vertex_count: int, reference_variance_percent: Optional[float] = None) -> float:
    """
    75 base, +5 for a plausible (4+ vertex) outline, then agreement with a
    reference footprint: +10 within 5%, +5 within 15%, -5 beyond 30%.
    Clamped to [50, 90].
    """
    confidence = BASE_CONFIDENCE
    if vertex_count >= 4:
        confidence += 5

    if reference_variance_percent is not None:
        variance = abs(reference_variance_percent)
        if variance <= 5:
            confidence += 10
        elif variance <= 15:
            confidence += 5
        elif variance > 30:
            confidence -= 5

    return float(min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, confidence)))


class ImageTracer(ABC):
    """Extracts a roof outline from imagery centered on a point."""

    @abstractmethod
    def trace(
        self,
        lat: float,
        lng: float,
        zoom: int,
        meters_per_pixel: float,
        timeout: Optional[float] = None,
    ) -> Optional[List[LatLon]]:
        """Return the outline ring as (lat, lon) pairs, or None if nothing was found."""


class AutoTraceLoader(FootprintAdapter):
    """
    Footprint adapter backed by an ImageTracer.

    Usage:
        loader = AutoTraceLoader(tracer, reference=get_osm_loader())
        footprint = loader.fetch_footprint(42.3601, -71.0589)

    When a reference adapter is given, its footprint is only used to score the
    traced outline. Its area never replaces the traced one.
    """

    def __init__(
        self,
        tracer: ImageTracer,
        reference: Optional[FootprintAdapter] = None,
        zoom: int = DEFAULT_ZOOM,
        simplify_tolerance_m: float = SIMPLIFY_TOLERANCE_M,
    ):
        self.tracer = tracer
        self.reference = reference
        self.zoom = zoom
        self.simplify_tolerance_m = simplify_tolerance_m

    def _reference_area(self, lat: float, lng: float, timeout: Optional[float]) -> Optional[float]:
        if self.reference is None:
            return None
        try:
            footprint = self.reference.fetch_footprint(lat, lng, timeout=timeout)
        except AdapterUnavailableError as e:
            log.warning(f"Reference footprint unavailable for auto-trace scoring: {e}")
            return None
        return footprint.area_sqft if footprint and footprint.area_sqft > 0 else None

    def trace(self, lat: float, lng: float, timeout: Optional[float] = None) -> Optional[TracedPolygon]:
        scale = meters_per_pixel(lat, self.zoom)
        try:
            ring = self.tracer.trace(lat, lng, self.zoom, scale, timeout=timeout)
        except AdapterUnavailableError:
            raise
        except Exception as e:
            log.warning(f"Image tracer failed at ({lat:.5f}, {lng:.5f}): {e}")
            raise AdapterUnavailableError(SOURCE_NAME, str(e)) from e

        if not ring:
            return None

        vertices = simplify(open_ring(ring), self.simplify_tolerance_m)
        if len(vertices) < 3:
            log.debug(f"Traced outline at ({lat:.5f}, {lng:.5f}) collapsed to {len(vertices)} vertices")
            return None

        reference_area = self._reference_area(lat, lng, timeout)
        variance = None
        if reference_area:
            traced_area = polygon_area(vertices) * SQM_TO_SQFT
            variance = (traced_area - reference_area) / reference_area * 100

        confidence = auto_trace_confidence(len(vertices), variance)
        log.debug(f"Auto-traced {len(vertices)} vertices at zoom {self.zoom} (confidence {confidence:.0f})")
        return TracedPolygon(vertices=vertices, confidence=confidence, zoom=self.zoom)

    def fetch_footprint(self, lat: float, lng: float, timeout: Optional[float] = None) -> Optional[BuildingFootprint]:
        traced = self.trace(lat, lng, timeout=timeout)
        if traced is None:
            return None

        area_sqm = polygon_area(traced.vertices)
        return BuildingFootprint(
            geometry=traced.vertices,
            area_sqm=area_sqm,
            area_sqft=area_sqm * SQM_TO_SQFT,
            source="auto-trace",
            confidence=traced.confidence,
        )
