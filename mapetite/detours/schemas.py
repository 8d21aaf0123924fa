"""
Pydantic schemas for the detour search API.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class LatLng(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class DetourFilters(BaseModel):
    keyword: str = Field("", max_length=100)
    min_price: Optional[int] = Field(None, ge=0, le=4)
    max_price: Optional[int] = Field(None, ge=0, le=4)


class DestinationRequest(BaseModel):
    origin: LatLng
    destination: LatLng


class DetourSuggestRequest(DestinationRequest):
    corridor_miles: Optional[float] = Field(None, gt=0)
    sample_spacing_km: Optional[float] = Field(None, gt=0, le=50)
    filters: DetourFilters = DetourFilters()


class SessionCreateRequest(BaseModel):
    corridor_miles: Optional[float] = Field(None, gt=0)
    sample_spacing_km: Optional[float] = Field(None, gt=0, le=50)


class SessionCreateResponse(BaseModel):
    session_id: str
    corridor_miles: float
    sample_spacing_km: float


class CorridorRequest(BaseModel):
    corridor_miles: float = Field(..., gt=0)


class SamplingRequest(BaseModel):
    sample_spacing_km: float = Field(..., gt=0, le=50)


class PassStartedResponse(BaseModel):
    session_id: str
    epoch: int
    status: str  # "started", "finished" or "failed"


class LoadMoreResponse(BaseModel):
    session_id: str
    scored: int


class RouteStepResponse(BaseModel):
    instruction: str
    duration_s: int
    distance_m: int
    end: Optional[LatLng] = None


class RouteResponse(BaseModel):
    polyline: str
    duration_s: int
    distance_m: int
    steps: List[RouteStepResponse] = []


class DetourResultResponse(BaseModel):
    poi_id: str
    name: str
    lat: Optional[float]
    lng: Optional[float]
    address: Optional[str]
    categories: List[str]
    price_level: Optional[int]
    rating: Optional[float]
    total_time_s: int
    added_time_s: int
    total_minutes: int
    added_minutes: float
    route: RouteResponse


class ProgressResponse(BaseModel):
    total_candidates: int
    completed_count: int
    eta_seconds: int
    found_count: int
    label: str


class DetourViewResponse(BaseModel):
    session_id: Optional[str] = None
    epoch: int
    loading: bool
    error: Optional[str] = None
    corridor_miles: float
    baseline: Optional[RouteResponse] = None
    discovered_count: int
    total_count: int
    results: List[DetourResultResponse]
    category_counts: Dict[str, int]
    progress: ProgressResponse
    filters: DetourFilters

