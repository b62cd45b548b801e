"""
Geometry kernel for building footprints.

Polygons are ordered rings of (lat, lon) tuples with implicit closure: the
last vertex connects back to the first without being repeated.
"""

import math
from typing import List, Sequence

from core.models import SQM_TO_SQFT, Complexity, GeometryAnalysis, LatLon

EARTH_RADIUS_M = 6371000
METERS_PER_DEGREE_LON = 111320  # at the equator, scaled by cos(lat)
METERS_PER_DEGREE_LAT = 110540
SIGNIFICANT_ANGLE_DEGREES = 15


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def _project(point: LatLon):
    lat, lon = point
    x = lon * METERS_PER_DEGREE_LON * math.cos(math.radians(lat))
    y = lat * METERS_PER_DEGREE_LAT
    return x, y


def polygon_area(vertices: Sequence[LatLon]) -> float:
    """
    Area of a lat/lon ring in square meters.

    Shoelace formula on a local equirectangular projection, applied per
    vertex. Returns 0 for fewer than 3 vertices.
    """
    n = len(vertices)
    if n < 3:
        return 0.0

    area = 0.0
    for i in range(n):
        x1, y1 = _project(vertices[i])
        x2, y2 = _project(vertices[(i + 1) % n])
        area += x1 * y2 - x2 * y1

    return abs(area / 2)


def polygon_area_sqft(vertices: Sequence[LatLon]) -> float:
    return polygon_area(vertices) * SQM_TO_SQFT


def perimeter(vertices: Sequence[LatLon]) -> float:
    """Sum of haversine edge lengths around the closed ring, in meters."""
    n = len(vertices)
    if n < 2:
        return 0.0

    total = 0.0
    for i in range(n):
        lat1, lon1 = vertices[i]
        lat2, lon2 = vertices[(i + 1) % n]
        total += haversine_distance(lat1, lon1, lat2, lon2)
    return total


def centroid(vertices: Sequence[LatLon]) -> LatLon:
    """Vertex mean. Good enough for picking the closest candidate building."""
    if not vertices:
        raise ValueError("centroid of an empty ring")
    lat = sum(p[0] for p in vertices) / len(vertices)
    lon = sum(p[1] for p in vertices) / len(vertices)
    return lat, lon


# ═══════════════════════════════════════════════════════════════════════════
# SIMPLIFICATION
# ═══════════════════════════════════════════════════════════════════════════
def _perpendicular_distance(point: LatLon, start: LatLon, end: LatLon) -> float:
    """Distance in degrees from `point` to the segment start-end."""
    dx = end[1] - start[1]
    dy = end[0] - start[0]

    if dx == 0 and dy == 0:
        return math.hypot(point[1] - start[1], point[0] - start[0])

    t = ((point[1] - start[1]) * dx + (point[0] - start[0]) * dy) / (dx * dx + dy * dy)
    t = max(0.0, min(1.0, t))

    nearest_lon = start[1] + t * dx
    nearest_lat = start[0] + t * dy
    return math.hypot(point[1] - nearest_lon, point[0] - nearest_lat)


def _douglas_peucker(points: List[LatLon], epsilon: float) -> List[LatLon]:
    if len(points) <= 2:
        return list(points)

    start, end = points[0], points[-1]
    max_distance = 0.0
    max_index = 0

    for i in range(1, len(points) - 1):
        distance = _perpendicular_distance(points[i], start, end)
        if distance > max_distance:
            max_distance = distance
            max_index = i

    if max_distance > epsilon:
        left = _douglas_peucker(points[: max_index + 1], epsilon)
        right = _douglas_peucker(points[max_index:], epsilon)
        return left[:-1] + right

    return [start, end]


def simplify(vertices: Sequence[LatLon], tolerance_m: float) -> List[LatLon]:
    """
    Douglas-Peucker simplification.

    Args:
        vertices: Ordered ring of (lat, lon) points
        tolerance_m: Maximum allowed deviation in meters (converted to degrees)

    Returns:
        Simplified ring. First and last vertices are always kept; rings of
        three or fewer points come back unchanged.
    """
    points = list(vertices)
    if len(points) <= 3:
        return points

    return _douglas_peucker(points, tolerance_m / METERS_PER_DEGREE_LON)


def significant_vertex_count(vertices: Sequence[LatLon]) -> int:
    """Count corners where the outline turns by more than 15 degrees (min 4)."""
    n = len(vertices)
    if n <= 4:
        return n

    significant = 0
    for i in range(n):
        prev = vertices[(i - 1) % n]
        curr = vertices[i]
        nxt = vertices[(i + 1) % n]

        angle1 = math.atan2(curr[0] - prev[0], curr[1] - prev[1])
        angle2 = math.atan2(nxt[0] - curr[0], nxt[1] - curr[1])
        diff = abs(math.degrees(angle2 - angle1))
        if diff > 180:
            diff = 360 - diff

        if diff > SIGNIFICANT_ANGLE_DEGREES:
            significant += 1

    return max(4, significant)


# ═══════════════════════════════════════════════════════════════════════════
# SHAPE ANALYSIS
# ═══════════════════════════════════════════════════════════════════════════
def estimate_roof_segments(vertex_count: int, is_rectangular: bool, aspect_ratio: float) -> int:
    """Rough roof-plane count from outline shape."""
    if is_rectangular and vertex_count <= 5:
        # elongated -> gable, square -> hip
        return 2 if aspect_ratio > 1.5 else 4
    if 6 <= vertex_count <= 8:
        return 6
    if 9 <= vertex_count <= 12:
        return 8
    if vertex_count > 12:
        return min(12, math.ceil(vertex_count / 2))
    return 4


def analyze_geometry(vertices: Sequence[LatLon]) -> GeometryAnalysis:
    """Shape metrics for a footprint ring."""
    if len(vertices) < 3:
        return GeometryAnalysis(
            vertex_count=0,
            is_rectangular=False,
            perimeter_m=0.0,
            compactness_ratio=0.0,
            aspect_ratio=1.0,
            estimated_segments=2,
            complexity=Complexity.SIMPLE,
        )

    perimeter_m = perimeter(vertices)
    area_m2 = polygon_area(vertices)
    compactness = area_m2 / (perimeter_m * perimeter_m) if perimeter_m > 0 else 0.0

    simplified_count = significant_vertex_count(vertices)
    is_rectangular = simplified_count <= 5 and compactness > 0.04

    lats = [p[0] for p in vertices]
    lons = [p[1] for p in vertices]
    min_lat, max_lat = min(lats), max(lats)
    min_lon, max_lon = min(lons), max(lons)
    lat_span = haversine_distance(min_lat, min_lon, max_lat, min_lon)
    lon_span = haversine_distance(min_lat, min_lon, min_lat, max_lon)
    short_side = min(lat_span, lon_span)
    aspect_ratio = max(lat_span, lon_span) / short_side if short_side > 0 else 1.0

    segments = estimate_roof_segments(simplified_count, is_rectangular, aspect_ratio)

    return GeometryAnalysis(
        vertex_count=len(vertices),
        is_rectangular=is_rectangular,
        perimeter_m=perimeter_m,
        compactness_ratio=compactness,
        aspect_ratio=aspect_ratio,
        estimated_segments=segments,
        complexity=Complexity.from_segments(segments),
    )


def meters_offset_to_degrees(lat: float, north_m: float, east_m: float) -> LatLon:
    """Convert a local metric offset into a (dlat, dlon) offset in degrees."""
    dlat = north_m / METERS_PER_DEGREE_LAT
    dlon = east_m / (METERS_PER_DEGREE_LON * math.cos(math.radians(lat)))
    return dlat, dlon


def open_ring(vertices: Sequence[LatLon]) -> List[LatLon]:
    """Drop a repeated closing vertex (GeoJSON / ArcGIS rings repeat the first point)."""
    points = [tuple(p) for p in vertices]
    if len(points) > 1 and points[0] == points[-1]:
        points = points[:-1]
    return points
