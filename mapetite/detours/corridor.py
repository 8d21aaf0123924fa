"""
Route corridor geometry for detour suggestions.

Distances are great-circle (haversine) distances; projections onto the route
use an equirectangular approximation local to each segment, which is accurate
enough at corridor scale (tens of kilometers).
"""
import math
from typing import List, Sequence, Tuple

from mapetite.models import GeoPoint

EARTH_RADIUS_KM = 6371.0


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """Calculate distance between two points in kilometers."""
    dlat = math.radians(b.lat - a.lat)
    dlng = math.radians(b.lng - a.lng)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(a.lat))
        * math.cos(math.radians(b.lat))
        * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def _project_onto_segment(
    p: GeoPoint, a: GeoPoint, b: GeoPoint,
) -> Tuple[float, float]:
    """
    Project P onto segment A-B.

    Returns:
        Tuple of (t clamped to [0, 1], haversine offset_km from P to the
        projected point).
    """
    cos_mid = math.cos(math.radians((a.lat + b.lat) / 2))

    x1 = math.radians(a.lng) * cos_mid
    y1 = math.radians(a.lat)
    x2 = math.radians(b.lng) * cos_mid
    y2 = math.radians(b.lat)
    xp = math.radians(p.lng) * cos_mid
    yp = math.radians(p.lat)

    dx = x2 - x1
    dy = y2 - y1
    seg_len_sq = dx * dx + dy * dy

    t = 0.0
    if seg_len_sq > 0:
        t = ((xp - x1) * dx + (yp - y1) * dy) / seg_len_sq
        t = max(0.0, min(1.0, t))

    # Back to lat/lng near the segment
    proj_lat = math.degrees(y1 + t * dy)
    proj_lng = math.degrees((x1 + t * dx) / cos_mid) if cos_mid else a.lng

    offset = haversine_km(p, GeoPoint(
        max(-90.0, min(90.0, proj_lat)),
        max(-180.0, min(180.0, proj_lng)),
    ))
    return t, offset


def point_to_segment_offset_km(p: GeoPoint, seg_start: GeoPoint, seg_end: GeoPoint) -> float:
    """
    Distance in km from P to the closest point of the segment (not the
    infinite line through it).
    """
    _, offset = _project_onto_segment(p, seg_start, seg_end)
    return offset


def point_to_polyline_offset_km(p: GeoPoint, path: Sequence[GeoPoint]) -> float:
    """Minimum segment offset over the polyline; inf when it has < 2 points."""
    if len(path) < 2:
        return math.inf

    best = math.inf
    for i in range(len(path) - 1):
        offset = point_to_segment_offset_km(p, path[i], path[i + 1])
        if offset < best:
            best = offset
    return best


def cumulative_lengths_km(path: Sequence[GeoPoint]) -> List[float]:
    """Prefix sums of segment lengths; element i is the route distance to vertex i."""
    prefix = [0.0]
    for i in range(len(path) - 1):
        prefix.append(prefix[i] + haversine_km(path[i], path[i + 1]))
    return prefix


def route_length_km(path: Sequence[GeoPoint]) -> float:
    if len(path) < 2:
        return 0.0
    return cumulative_lengths_km(path)[-1]


def project_onto_polyline(p: GeoPoint, path: Sequence[GeoPoint]) -> Tuple[float, float]:
    """
    Locate P relative to the route.

    Returns:
        Tuple of (along_km, offset_km): distance along the route to the
        projection on the closest segment, and the offset from it. The first
        segment with the minimal offset wins ties.
    """
    if len(path) < 2:
        return 0.0, math.inf

    prefix = cumulative_lengths_km(path)
    best_along, best_offset = 0.0, math.inf

    for i in range(len(path) - 1):
        t, offset = _project_onto_segment(p, path[i], path[i + 1])
        if offset < best_offset:
            seg_km = prefix[i + 1] - prefix[i]
            best_along = prefix[i] + t * seg_km
            best_offset = offset

    return best_along, best_offset


def is_within_corridor(
    p: GeoPoint,
    path: Sequence[GeoPoint],
    buffer_km: float,
) -> Tuple[bool, float]:
    """
    Check if a point is within the route corridor buffer.

    Returns:
        Tuple of (is_within, distance_km from the route).
    """
    dist = point_to_polyline_offset_km(p, path)
    return dist <= buffer_km, dist
