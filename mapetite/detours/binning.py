"""
Spread detour candidates along the route.

Taking the first N corridor POIs biases results towards the start of the
route. Instead the route is cut into `cap` equal-length bins and each bin
contributes at most its closest-to-route POI.
"""
import logging
import math
from typing import List, Optional, Sequence

from mapetite.detours.corridor import project_onto_polyline, route_length_km
from mapetite.models import DetourCandidate, GeoPoint, POI

logger = logging.getLogger(__name__)

MIN_BIN_WIDTH_KM = 0.001


def select_candidates(
    pois: Sequence[POI],
    path: Sequence[GeoPoint],
    cap: int,
) -> List[POI]:
    """
    Pick at most `cap` POIs, at most one per along-route bin.

    Args:
        pois: Corridor-filtered POIs.
        path: Decoded route polyline.
        cap: Maximum number of POIs to score in one pass (also the bin count).

    Returns:
        Selected POIs in along-route order.
    """
    if cap < 1:
        raise ValueError(f"Candidate cap must be at least 1, got {cap}")
    if len(path) < 2:
        raise ValueError("Route polyline needs at least two points")

    total_km = route_length_km(path)
    bin_count = cap
    bin_width_km = max(MIN_BIN_WIDTH_KM, total_km / bin_count)
    bins: List[Optional[DetourCandidate]] = [None] * bin_count

    for poi in pois:
        if poi.location is None:
            continue
        along_km, offset_km = project_onto_polyline(poi.location, path)
        if math.isinf(offset_km):
            continue

        idx = min(bin_count - 1, max(0, int(math.floor(along_km / bin_width_km))))
        current = bins[idx]
        if current is None or offset_km < current.offset_km:
            bins[idx] = DetourCandidate(poi=poi, along_km=along_km, offset_km=offset_km)

    selected = [c for c in bins if c is not None]
    if len(selected) > cap:
        selected = sorted(selected, key=lambda c: c.offset_km)[:cap]

    logger.info(
        "detours.select_candidates",
        extra={
            "input_count": len(pois),
            "selected_count": len(selected),
            "route_km": round(total_km, 2),
            "bin_width_km": round(bin_width_km, 3),
        },
    )
    return [c.poi for c in selected]
