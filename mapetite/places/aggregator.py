"""
Candidate discovery along a route.

One nearby search per sample point, issued strictly one at a time to bound
upstream load. Results are merged by place id (first seen wins) and then
narrowed to the route corridor.
"""
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence

from mapetite.config import get_settings
from mapetite.detours.corridor import point_to_polyline_offset_km
from mapetite.models import GeoPoint, POI
from mapetite.places.client import PlacesClient

logger = logging.getLogger(__name__)
settings = get_settings()


async def aggregate_candidates(
    places: PlacesClient,
    samples: Sequence[GeoPoint],
    place_type: Optional[str] = None,
    rank_by_distance: Optional[bool] = None,
    radius_m: Optional[int] = None,
    max_pages: Optional[int] = None,
    page_delay_s: Optional[float] = None,
    should_continue: Optional[Callable[[], bool]] = None,
) -> List[POI]:
    """
    Fetch and deduplicate POIs around every sample point.

    A failed search for one sample is logged and skipped. `should_continue`
    is checked before each request so a superseded search stops early.

    Returns:
        Unique POIs in first-seen order.
    """
    place_type = place_type or settings.places_type
    if rank_by_distance is None:
        rank_by_distance = settings.places_rank_by_distance
    if radius_m is None:
        radius_m = settings.places_radius_m
    max_pages = max(1, max_pages if max_pages is not None else settings.places_max_pages)
    if page_delay_s is None:
        page_delay_s = settings.places_page_delay_s

    seen: Dict[str, POI] = {}
    failed_samples = 0

    for i, sample in enumerate(samples):
        page_token: Optional[str] = None
        for page in range(max_pages):
            if should_continue is not None and not should_continue():
                logger.info(f"Candidate discovery superseded after {i} of {len(samples)} samples")
                return list(seen.values())

            if page_token:
                # Page tokens only become valid after a short delay upstream
                await asyncio.sleep(page_delay_s)

            try:
                result = await places.search_nearby(
                    sample,
                    radius_m=radius_m,
                    rank_by_distance=rank_by_distance,
                    place_type=place_type,
                    page_token=page_token,
                )
            except Exception as e:
                logger.warning(f"Places search failed near sample {i} ({sample.as_param()}): {e}")
                failed_samples += 1
                break

            added = 0
            for poi in result.results:
                if poi.id not in seen:
                    seen[poi.id] = poi
                    added += 1
            logger.debug(
                f"Sample {i} page {page}: {len(result.results)} results, "
                f"{added} new, {len(seen)} unique so far"
            )

            page_token = result.next_page_token
            if not page_token:
                break

    logger.info(
        "places.aggregate_candidates",
        extra={
            "sample_count": len(samples),
            "failed_samples": failed_samples,
            "unique_pois": len(seen),
        },
    )
    return list(seen.values())


def filter_to_corridor(
    pois: Sequence[POI],
    path: Sequence[GeoPoint],
    buffer_km: float,
) -> List[POI]:
    """Keep POIs within `buffer_km` of the route. POIs without a location are dropped."""
    kept = []
    for poi in pois:
        if poi.location is None:
            continue
        if point_to_polyline_offset_km(poi.location, path) <= buffer_km:
            kept.append(poi)

    logger.info(f"Corridor filter ({buffer_km:.2f} km): kept {len(kept)}/{len(pois)} POIs")
    return kept
