"""
Configuration loaded from environment variables.
"""
from functools import lru_cache
from pydantic_settings import BaseSettings

KM_PER_MILE = 1.60934


class Settings(BaseSettings):
    # API Authentication
    api_key: str = "dev-api-key-change-me"

    # Logging
    log_level: str = "INFO"

    # Upstream mapping provider
    google_api_key: str = ""
    places_base_url: str = "https://maps.googleapis.com/maps/api/place"
    directions_base_url: str = "https://maps.googleapis.com/maps/api/directions"
    http_timeout_s: float = 10.0

    # Candidate discovery
    places_type: str = "restaurant"
    places_rank_by_distance: bool = True
    places_radius_m: int = 5000
    places_max_pages: int = 1
    places_page_delay_s: float = 2.0
    sample_spacing_km: float = 5.0

    # Corridor settings (miles, user adjustable within bounds)
    corridor_miles: float = 3.0
    corridor_min_miles: float = 1.0
    corridor_max_miles: float = 6.0

    # Detour scoring
    max_detour_candidates: int = 30
    scoring_batch_size: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
