"""
Route sampling for candidate discovery.
"""
from typing import List, Sequence

from mapetite.detours.corridor import haversine_km
from mapetite.models import GeoPoint


def sample_route(path: Sequence[GeoPoint], spacing_km: float) -> List[GeoPoint]:
    """
    Pick search points roughly every `spacing_km` along the route.

    Walks the segments accumulating length. The first vertex is always a
    sample; afterwards, whenever the accumulated length reaches the spacing,
    the vertex at the start of the segment that closed the run is emitted and
    the accumulator resets. The final vertex is always appended so the end of
    the route is searched.
    """
    if len(path) < 2:
        raise ValueError("Route polyline needs at least two points")
    if spacing_km <= 0:
        raise ValueError(f"Sample spacing must be positive, got {spacing_km}")

    samples: List[GeoPoint] = []
    accumulated_km = 0.0

    for i in range(len(path) - 1):
        accumulated_km += haversine_km(path[i], path[i + 1])
        if accumulated_km >= spacing_km or i == 0:
            samples.append(path[i])
            accumulated_km = 0.0

    samples.append(path[-1])
    return samples
