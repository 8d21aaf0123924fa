"""
Places API client abstraction.

Currently implements Google Places Nearby Search.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from mapetite.config import get_settings
from mapetite.models import GeoPoint, POI

logger = logging.getLogger(__name__)
settings = get_settings()

DEFAULT_RADIUS_M = 5000
MIN_RADIUS_M = 500
MAX_RADIUS_M = 8000


@dataclass
class PlacesPage:
    """One page of nearby search results."""
    results: List[POI] = field(default_factory=list)
    next_page_token: Optional[str] = None


class PlacesClient:
    """Abstract interface for searching places around a location."""

    async def search_nearby(
        self,
        location: GeoPoint,
        radius_m: Optional[int] = None,
        rank_by_distance: bool = False,
        place_type: str = "restaurant",
        keyword: Optional[str] = None,
        min_price: Optional[int] = None,
        max_price: Optional[int] = None,
        page_token: Optional[str] = None,
    ) -> PlacesPage:
        raise NotImplementedError


def clamp_radius(radius_m: Optional[int]) -> int:
    if radius_m is None:
        return DEFAULT_RADIUS_M
    return max(MIN_RADIUS_M, min(MAX_RADIUS_M, int(radius_m)))


def clamp_price(value: Optional[int]) -> Optional[int]:
    if value is None:
        return None
    return max(0, min(4, int(value)))


def build_nearby_params(
    location: GeoPoint,
    radius_m: Optional[int] = None,
    rank_by_distance: bool = False,
    place_type: str = "restaurant",
    keyword: Optional[str] = None,
    min_price: Optional[int] = None,
    max_price: Optional[int] = None,
    page_token: Optional[str] = None,
) -> Dict[str, str]:
    """
    Build Nearby Search query parameters (without the key).

    `rankby=distance` and `radius` are mutually exclusive upstream, so the
    radius is only sent when ranking by prominence.
    """
    params: Dict[str, str] = {"location": location.as_param()}

    params["type"] = place_type or "restaurant"
    if keyword:
        params["keyword"] = keyword

    min_p = clamp_price(min_price)
    max_p = clamp_price(max_price)
    if min_p is not None:
        params["minprice"] = str(min_p)
    if max_p is not None:
        params["maxprice"] = str(max_p)

    if rank_by_distance:
        params["rankby"] = "distance"
    else:
        params["radius"] = str(clamp_radius(radius_m))

    if page_token:
        params["pagetoken"] = page_token

    return params


class GooglePlacesClient(PlacesClient):
    """Google Places Nearby Search client using async HTTP requests."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or settings.google_api_key
        if not self.api_key:
            logger.warning("GOOGLE_API_KEY not set; Places calls will fail")
        self.base_url = (base_url or settings.places_base_url).rstrip("/")
        self.timeout = settings.http_timeout_s
        self._http = http_client

    async def search_nearby(
        self,
        location: GeoPoint,
        radius_m: Optional[int] = None,
        rank_by_distance: bool = False,
        place_type: str = "restaurant",
        keyword: Optional[str] = None,
        min_price: Optional[int] = None,
        max_price: Optional[int] = None,
        page_token: Optional[str] = None,
    ) -> PlacesPage:
        """
        Search for places near a location.

        Upstream failures are logged and produce an empty page.
        """
        if not self.api_key:
            return PlacesPage()

        params = build_nearby_params(
            location,
            radius_m=radius_m,
            rank_by_distance=rank_by_distance,
            place_type=place_type,
            keyword=keyword,
            min_price=min_price,
            max_price=max_price,
            page_token=page_token,
        )
        params["key"] = self.api_key
        url = f"{self.base_url}/nearbysearch/json"

        try:
            data = await self._get_json(url, params)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Google Places nearby search error: {e}")
            return PlacesPage()

        status = data.get("status")
        if status and status not in ("OK", "ZERO_RESULTS"):
            logger.error(
                f"Google Places nearby search returned {status}: "
                f"{data.get('error_message', '')}"
            )
            return PlacesPage()

        return PlacesPage(
            results=[parse_place(p) for p in data.get("results", []) if p.get("place_id")],
            next_page_token=data.get("next_page_token") or None,
        )

    async def _get_json(self, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        if self._http is not None:
            resp = await self._http.get(url, params=params, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(url, params=params)
        resp.raise_for_status()
        return resp.json()


def parse_place(place: Dict[str, Any]) -> POI:
    """Convert a Nearby Search result into a POI; missing geometry gives no location."""
    loc = (place.get("geometry") or {}).get("location") or {}
    location = None
    lat, lng = loc.get("lat"), loc.get("lng")
    if lat is not None and lng is not None:
        try:
            location = GeoPoint(float(lat), float(lng))
        except (TypeError, ValueError):
            location = None

    return POI(
        id=place["place_id"],
        name=place.get("name", ""),
        location=location,
        price_level=_parse_price_level(place.get("price_level")),
        rating=place.get("rating"),
        categories=list(place.get("types", [])),
        address=place.get("vicinity") or place.get("formatted_address"),
        raw=place,
    )


def _parse_price_level(val: Any) -> Optional[int]:
    """Convert Google's price level (int or enum string) to int."""
    if val is None:
        return None
    mapping = {
        "PRICE_LEVEL_FREE": 0,
        "PRICE_LEVEL_INEXPENSIVE": 1,
        "PRICE_LEVEL_MODERATE": 2,
        "PRICE_LEVEL_EXPENSIVE": 3,
        "PRICE_LEVEL_VERY_EXPENSIVE": 4,
    }
    if isinstance(val, str):
        return mapping.get(val)
    if isinstance(val, (int, float)):
        return int(val)
    return None


# Singleton
_client: Optional[PlacesClient] = None


def get_places_client() -> PlacesClient:
    """Get or create the Places client singleton."""
    global _client
    if _client is None:
        _client = GooglePlacesClient()
    return _client
