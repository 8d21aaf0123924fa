"""
Domain models for the detour engine.

Plain dataclasses: everything lives in memory for the lifetime of a session.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 coordinate in decimal degrees."""
    lat: float
    lng: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"Latitude out of range: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"Longitude out of range: {self.lng}")

    def as_param(self) -> str:
        """Format as the "lat,lng" string upstream providers expect."""
        return f"{self.lat},{self.lng}"


@dataclass
class POI:
    """A point of interest returned by a places search."""
    id: str
    name: str
    location: Optional[GeoPoint] = None
    price_level: Optional[int] = None
    rating: Optional[float] = None
    categories: List[str] = field(default_factory=list)
    address: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class RouteStep:
    instruction: str
    duration_s: int
    distance_m: int
    end: Optional[GeoPoint] = None


@dataclass(frozen=True)
class RouteLeg:
    duration_s: int
    distance_m: int = 0
    steps: List[RouteStep] = field(default_factory=list)


@dataclass(frozen=True)
class Route:
    """First route returned by the directions provider, with its decoded shape."""
    polyline: str
    path: List[GeoPoint]
    legs: List[RouteLeg] = field(default_factory=list)

    @property
    def total_duration_s(self) -> int:
        return sum(leg.duration_s for leg in self.legs)

    @property
    def total_distance_m(self) -> int:
        return sum(leg.distance_m for leg in self.legs)


@dataclass(frozen=True)
class DetourCandidate:
    """A POI projected onto the route; only used while picking bin occupants."""
    poi: POI
    along_km: float
    offset_km: float


@dataclass(frozen=True)
class DetourResult:
    """A scored detour through one POI."""
    poi: POI
    route: Route
    total_time_s: int
    added_time_s: int


@dataclass(frozen=True)
class ScoringProgress:
    total_candidates: int = 0
    completed_count: int = 0
    eta_seconds: int = 0
    found_count: int = 0
    label: str = ""
