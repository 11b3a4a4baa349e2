from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from planner.core.models import AccommodationAnchor, ClusteringStrategy, ItineraryOptions, Stop
from planner.core.settings import Settings

_settings = Settings()


class OptimizeRequest(BaseModel):
    stops: List[Stop] = Field(..., description="Points of interest to distribute over the trip")
    days: int = Field(..., ge=1, le=_settings.MAX_ITINERARY_DAYS, description="Day budget")
    strategy: ClusteringStrategy = Field(default=ClusteringStrategy(_settings.DEFAULT_STRATEGY))
    options: ItineraryOptions = Field(
        default_factory=lambda: ItineraryOptions(start_time=_settings.DEFAULT_START_TIME)
    )
    accommodation: Optional[AccommodationAnchor] = None
    city: Optional[str] = Field(None, max_length=200)

    @field_validator('stops')
    @classmethod
    def validate_stops(cls, v):
        if not v:
            raise ValueError("At least one stop is required")
        if len(v) > _settings.MAX_STOPS:
            raise ValueError(f"Too many stops (max {_settings.MAX_STOPS})")
        ids = [s.id for s in v]
        if len(set(ids)) != len(ids):
            raise ValueError("Stop ids must be unique")
        return v


class OptimizeByIdsRequest(BaseModel):
    place_ids: List[str] = Field(..., description="Google place ids to resolve into stops")
    days: int = Field(..., ge=1, le=_settings.MAX_ITINERARY_DAYS)
    strategy: ClusteringStrategy = Field(default=ClusteringStrategy(_settings.DEFAULT_STRATEGY))
    options: ItineraryOptions = Field(
        default_factory=lambda: ItineraryOptions(start_time=_settings.DEFAULT_START_TIME)
    )
    accommodation: Optional[AccommodationAnchor] = None
    city: Optional[str] = Field(None, max_length=200)

    @field_validator('place_ids')
    @classmethod
    def validate_place_ids(cls, v):
        cleaned = [pid.strip() for pid in v if pid and pid.strip()]
        if not cleaned:
            raise ValueError("At least one place id is required")
        if len(cleaned) > _settings.MAX_STOPS:
            raise ValueError(f"Too many place ids (max {_settings.MAX_STOPS})")
        return cleaned


class PlanningErrorResponse(BaseModel):
    detail: str
    stage: str

