"""
Directions API client abstraction.

Currently implements Google Directions with an optional single waypoint.
"""
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from mapetite.config import get_settings
from mapetite.models import GeoPoint, Route, RouteLeg, RouteStep
from mapetite.utils.polyline import decode_polyline

logger = logging.getLogger(__name__)
settings = get_settings()

_TAG_RE = re.compile(r"<[^>]+>")


class DirectionsClient:
    """Abstract interface for driving directions."""

    async def get_route(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        waypoint: Optional[str] = None,
    ) -> Optional[Route]:
        """
        Fetch the best route, optionally forced through the place `waypoint`.

        Returns None when no usable route is available.
        """
        raise NotImplementedError


class GoogleDirectionsClient(DirectionsClient):
    """Google Directions API client using async HTTP requests."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or settings.google_api_key
        if not self.api_key:
            logger.warning("GOOGLE_API_KEY not set; Directions calls will fail")
        self.base_url = (base_url or settings.directions_base_url).rstrip("/")
        self.timeout = settings.http_timeout_s
        self._http = http_client

    async def get_route(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        waypoint: Optional[str] = None,
    ) -> Optional[Route]:
        if not self.api_key:
            return None

        params = {
            "origin": origin.as_param(),
            "destination": destination.as_param(),
            "key": self.api_key,
        }
        if waypoint:
            params["waypoints"] = f"place_id:{waypoint}"
        url = f"{self.base_url}/json"

        try:
            if self._http is not None:
                resp = await self._http.get(url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.get(url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Google Directions error (waypoint={waypoint}): {e}")
            return None

        status = data.get("status")
        if status and status != "OK":
            logger.error(
                f"Google Directions returned {status} (waypoint={waypoint}): "
                f"{data.get('error_message', '')}"
            )
            return None

        routes = data.get("routes") or []
        if not routes:
            return None

        try:
            return parse_route(routes[0])
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed Directions route (waypoint={waypoint}): {e}")
            return None


def parse_route(route: Dict[str, Any]) -> Route:
    """Convert a Directions route object into a Route."""
    encoded = (route.get("overview_polyline") or {}).get("points", "")
    legs: List[RouteLeg] = []
    for leg in route.get("legs", []):
        steps = [
            RouteStep(
                instruction=strip_html(step.get("html_instructions", "")),
                duration_s=int(step.get("duration", {}).get("value", 0)),
                distance_m=int(step.get("distance", {}).get("value", 0)),
                end=_parse_latlng(step.get("end_location")),
            )
            for step in leg.get("steps", [])
        ]
        legs.append(RouteLeg(
            duration_s=int(leg["duration"]["value"]),
            distance_m=int(leg.get("distance", {}).get("value", 0)),
            steps=steps,
        ))

    return Route(polyline=encoded, path=decode_polyline(encoded), legs=legs)


def strip_html(text: str) -> str:
    return " ".join(_TAG_RE.sub(" ", text).split())


def _parse_latlng(loc: Optional[Dict[str, Any]]) -> Optional[GeoPoint]:
    if not loc or loc.get("lat") is None or loc.get("lng") is None:
        return None
    return GeoPoint(float(loc["lat"]), float(loc["lng"]))


# Singleton
_client: Optional[DirectionsClient] = None


def get_directions_client() -> DirectionsClient:
    """Get or create the Directions client singleton."""
    global _client
    if _client is None:
        _client = GoogleDirectionsClient()
    return _client
