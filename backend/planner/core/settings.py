from pathlib import Path
from typing import Optional, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Google Maps Platform
    GOOGLE_MAPS_API_KEY: str = ""
    ROUTES_API_URL: str = "https://routes.googleapis.com/directions/v2:computeRoutes"
    PLACE_DETAILS_API_URL: str = "https://maps.googleapis.com/maps/api/place/details/json"
    ROUTES_FIELD_MASK: str = (
        "routes.duration,routes.distanceMeters,routes.polyline.encodedPolyline,"
        "routes.legs.duration,routes.legs.distanceMeters,routes.legs.polyline"
    )

    # Routing request
    ROUTING_TIMEOUT_SECONDS: float = 10.0
    TRAVEL_MODE: str = "DRIVE"
    ROUTING_PREFERENCE: str = "TRAFFIC_AWARE"
    AVOID_TOLLS: bool = False
    AVOID_HIGHWAYS: bool = False
    AVOID_FERRIES: bool = True

    # Planning defaults
    DEFAULT_STRATEGY: str = "balanced"
    DEFAULT_START_TIME: str = "09:00"
    MAX_ITINERARY_DAYS: int = 30
    MAX_STOPS: int = 100
    KMEANS_MAX_ITERATIONS: int = 100
    ROUTE_OPTIMIZER_MAX_PASSES: int = 100
    CLUSTERING_SEED: Optional[int] = None  # fixed seed makes clustering reproducible

    # Place details
    PLACE_DETAILS_CACHE_TTL_SECONDS: int = 300  # 5 minutes
    PLACE_DETAILS_BATCH_SIZE: int = 10

    # Rate Limiting
    ENABLE_RATE_LIMITING: bool = True
    RATE_LIMIT_OPTIMIZE: str = "30/minute"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "planner.log"

    # CORS
    ALLOWED_ORIGINS: Union[list, str] = ["http://localhost:3000", "http://localhost:3001"]

    @field_validator('ALLOWED_ORIGINS', mode='before')
    @classmethod
    def parse_allowed_origins(cls, v):
        """Parse ALLOWED_ORIGINS from comma-separated string or list"""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator('DEFAULT_START_TIME')
    @classmethod
    def validate_start_time(cls, v):
        hours, _, minutes = v.partition(":")
        if not (hours.isdigit() and minutes.isdigit() and int(hours) < 24 and int(minutes) < 60):
            raise ValueError("DEFAULT_START_TIME must be HH:MM")
        return v

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).parents[3] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )
