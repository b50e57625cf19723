"""
Geospatial helpers for track snapping.

Coordinates are (longitude, latitude) pairs in decimal degrees, matching
GeoJSON ordering.
"""
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

Point = Tuple[float, float]
Line = List[Point]
BBox = Tuple[float, float, float, float]  # min lon, min lat, max lon, max lat

EARTH_RADIUS_KM = 6371.0088
# Shorter segments are rounding noise from slicing and carry no direction
MIN_STEP_KM = 1e-9


def haversine_km(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Great-circle distance between two points in kilometers.

    Args:
        a: First point as (lon, lat)
        b: Second point as (lon, lat)

    Returns:
        float: Distance in kilometers
    """
    lon1, lat1, lon2, lat2 = map(math.radians, [a[0], a[1], b[0], b[1]])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def initial_bearing(a: Sequence[float], b: Sequence[float]) -> float:
    """Great-circle bearing from a to b in degrees, in (-180, 180]."""
    lon1, lat1, lon2, lat2 = map(math.radians, [a[0], a[1], b[0], b[1]])
    dlon = lon2 - lon1
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    return math.degrees(math.atan2(y, x))


def normalize_bearing(degrees: float) -> float:
    """Normalize an angle to [0, 360)."""
    normalized = degrees % 360
    # -1e-15 % 360 rounds to 360.0
    return 0.0 if normalized >= 360 else normalized


def bbox_around(point: Sequence[float], size: float) -> BBox:
    lon, lat = point[0], point[1]
    return (lon - size, lat - size, lon + size, lat + size)


def clip_segment(a: Point, b: Point, bbox: BBox) -> Optional[Tuple[Point, Point]]:
    """Clip segment a-b to bbox (Liang-Barsky). Returns None if outside."""
    min_x, min_y, max_x, max_y = bbox
    x0, y0 = a
    dx = b[0] - x0
    dy = b[1] - y0
    t0, t1 = 0.0, 1.0

    for p, q in ((-dx, x0 - min_x), (dx, max_x - x0), (-dy, y0 - min_y), (dy, max_y - y0)):
        if p == 0:
            if q < 0:
                return None
            continue
        t = q / p
        if p < 0:
            if t > t1:
                return None
            t0 = max(t0, t)
        else:
            if t < t0:
                return None
            t1 = min(t1, t)

    start = a if t0 == 0 else (x0 + t0 * dx, y0 + t0 * dy)
    end = b if t1 == 1 else (x0 + t1 * dx, y0 + t1 * dy)
    return start, end


def clip_line(coords: Iterable[Sequence[float]], bbox: BBox) -> List[Line]:
    """Clip a polyline to bbox, returning the runs that fall inside it."""
    points = [(float(c[0]), float(c[1])) for c in coords]
    runs: List[Line] = []
    current: Line = []

    for a, b in zip(points, points[1:]):
        clipped = clip_segment(a, b, bbox)
        if clipped is None:
            if current:
                runs.append(current)
                current = []
            continue
        start, end = clipped
        if current and current[-1] == start:
            current.append(end)
        else:
            if current:
                runs.append(current)
            current = [start, end]

    if current:
        runs.append(current)
    return runs


def feature_lines(feature: Dict[str, Any]) -> List[List[Sequence[float]]]:
    """Get the coordinate lists of a LineString or MultiLineString feature."""
    geometry = feature.get("geometry") or {}
    kind = geometry.get("type")
    coordinates = geometry.get("coordinates") or []
    if kind == "LineString":
        return [coordinates]
    if kind == "MultiLineString":
        return list(coordinates)
    return []


def _project(p: Point, a: Point, b: Point) -> float:
    """Fraction of a-b at which p projects, clamped to [0, 1]."""
    k = math.cos(math.radians(p[1]))
    ax, ay = (a[0] - p[0]) * k, a[1] - p[1]
    bx, by = (b[0] - p[0]) * k, b[1] - p[1]
    dx, dy = bx - ax, by - ay
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return 0.0
    return max(0.0, min(1.0, -(ax * dx + ay * dy) / length_sq))


def _interpolate(a: Point, b: Point, t: float) -> Point:
    return (a[0] + t * (b[0] - a[0]), a[1] + t * (b[1] - a[1]))


def nearest_point_on_segment(p: Point, a: Point, b: Point) -> Point:
    """Project p onto segment a-b using a local equirectangular approximation."""
    return _interpolate(a, b, _project(p, a, b))


def nearest_point_on_lines(p: Point, lines: Iterable[Line]) -> Optional[Point]:
    """Nearest point to p on any of the lines, or None if there are none."""
    best: Optional[Point] = None
    best_distance = math.inf
    for line in lines:
        for a, b in zip(line, line[1:]):
            candidate = nearest_point_on_segment(p, a, b)
            distance = haversine_km(p, candidate)
            if distance < best_distance:
                best, best_distance = candidate, distance
    return best


def nearest_vertex(p: Point, lines: Iterable[Line], exclude: Optional[Point] = None) -> Optional[Point]:
    """Nearest line vertex to p, skipping a vertex equal to exclude."""
    best: Optional[Point] = None
    best_distance = math.inf
    for line in lines:
        for vertex in line:
            if exclude is not None and vertex == exclude:
                continue
            distance = haversine_km(p, vertex)
            if distance < best_distance:
                best, best_distance = vertex, distance
    return best


def line_length_km(line: Sequence[Point]) -> float:
    return sum(haversine_km(a, b) for a, b in zip(line, line[1:]))


def locate_on_line(p: Point, line: Line) -> Tuple[int, float, Point]:
    """
    Find where p projects onto a polyline.

    Returns:
        (segment index, fraction along that segment, projected point)
    """
    best = (0, 0.0, line[0])
    best_distance = math.inf
    for i, (a, b) in enumerate(zip(line, line[1:])):
        t = _project(p, a, b)
        candidate = _interpolate(a, b, t)
        distance = haversine_km(p, candidate)
        if distance < best_distance:
            best, best_distance = (i, t, candidate), distance
    return best


def slice_line(line: Line, start: Point, end: Point) -> Line:
    """
    Cut the part of a polyline between the projections of start and end.

    The result runs from start towards end, whichever way the line's
    vertices are ordered.
    """
    if len(line) < 2:
        return list(line)
    i, ti, start_point = locate_on_line(start, line)
    j, tj, end_point = locate_on_line(end, line)
    if (i, ti) <= (j, tj):
        return [start_point] + line[i + 1:j + 1] + [end_point]
    return [start_point] + line[j + 1:i + 1][::-1] + [end_point]


def point_along(line: Sequence[Point], distance_km: float) -> Tuple[Point, Optional[float]]:
    """
    Walk distance_km along a polyline from its first point.

    Distances past either end stop at that end.

    Returns:
        (point, bearing of the segment it lies on in [0, 360), or None if the
        line has no length)
    """
    remaining = max(distance_km, 0.0)
    point: Point = line[0]
    bearing: Optional[float] = None
    for a, b in zip(line, line[1:]):
        step = haversine_km(a, b)
        if step < MIN_STEP_KM:
            continue
        bearing = normalize_bearing(initial_bearing(a, b))
        if remaining <= step:
            return _interpolate(a, b, remaining / step), bearing
        remaining -= step
        point = b
    return point, bearing
