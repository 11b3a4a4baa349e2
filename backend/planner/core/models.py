"""
Domain types shared by the optimization engine.

Everything here is immutable: a planning request builds fresh objects and
nothing downstream mutates them.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator


class ClusteringStrategy(str, Enum):
    GEOGRAPHICAL = "geographical"
    BALANCED = "balanced"
    TIME_OPTIMIZED = "time-optimized"


class EndTimePreference(str, Enum):
    FLEXIBLE = "flexible"
    FIXED = "fixed"


def format_duration(seconds: int) -> str:
    """1h 5m, or 12m under an hour"""
    hours, rem = divmod(int(seconds), 3600)
    minutes = rem // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _validate_hhmm(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    hours, sep, minutes = v.partition(":")
    if not sep or not (hours.isdigit() and minutes.isdigit()):
        raise ValueError(f"Invalid time '{v}', expected HH:MM")
    if int(hours) > 23 or int(minutes) > 59:
        raise ValueError(f"Invalid time '{v}', expected HH:MM")
    return f"{int(hours):02d}:{int(minutes):02d}"


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Stop(BaseModel):
    """A point of interest to visit. Popularity signals drive visit length."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["stop"] = "stop"
    id: str = Field(..., min_length=1)
    name: str
    location: Coordinate
    rating: Optional[float] = Field(None, ge=0, le=5)
    user_ratings_total: Optional[int] = Field(None, ge=0)
    address: Optional[str] = None


class AccommodationAnchor(BaseModel):
    """Where the traveller sleeps; each day starts and ends here."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["accommodation"] = "accommodation"
    name: str = "Accommodation"
    location: Coordinate
    address: Optional[str] = None


Waypoint = Union[Stop, AccommodationAnchor]


class Leg(BaseModel):
    model_config = ConfigDict(frozen=True)

    origin: Waypoint = Field(..., discriminator="kind")
    destination: Waypoint = Field(..., discriminator="kind")
    distance_meters: int = Field(..., ge=0)
    duration_seconds: int = Field(..., ge=0)
    polyline: Optional[str] = None
    estimated: bool = False

    @computed_field
    @property
    def distance_text(self) -> str:
        return f"{self.distance_meters / 1000:.1f} km"

    @computed_field
    @property
    def duration_text(self) -> str:
        return format_duration(self.duration_seconds)


class ItineraryOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_time: str = "09:00"
    end_time_preference: EndTimePreference = EndTimePreference.FLEXIBLE
    fixed_end_time: Optional[str] = None

    @field_validator("start_time", "fixed_end_time")
    @classmethod
    def validate_times(cls, v):
        return _validate_hhmm(v)

    @model_validator(mode="after")
    def check_fixed_end(self):
        if self.end_time_preference == EndTimePreference.FIXED and not self.fixed_end_time:
            raise ValueError("fixed_end_time is required when end_time_preference is 'fixed'")
        return self

    @property
    def has_fixed_end(self) -> bool:
        return self.end_time_preference == EndTimePreference.FIXED and self.fixed_end_time is not None


class DayPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: int = Field(..., ge=1)
    stops: List[Stop]
    legs: List[Leg]
    total_distance_meters: int
    total_duration_seconds: int
    start_time: str
    end_time: str
    routing_degraded: bool = False

    @classmethod
    def build(cls, day: int, stops: List[Stop], legs: List[Leg], start_time: str,
              end_time: str, routing_degraded: bool = False) -> "DayPlan":
        """Create a day whose totals are the exact sums of its legs."""
        return cls(
            day=day,
            stops=stops,
            legs=legs,
            total_distance_meters=sum(leg.distance_meters for leg in legs),
            total_duration_seconds=sum(leg.duration_seconds for leg in legs),
            start_time=start_time,
            end_time=end_time,
            routing_degraded=routing_degraded,
        )


class ItineraryPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    city: Optional[str] = None
    strategy: ClusteringStrategy
    total_days: int
    requested_days: int
    days: List[DayPlan]
    total_stops: int
    total_distance_meters: int
    total_duration_seconds: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_days(cls, days: List[DayPlan], strategy: ClusteringStrategy,
                  requested_days: int, city: Optional[str] = None) -> "ItineraryPlan":
        ordered = sorted(days, key=lambda d: d.day)
        return cls(
            city=city,
            strategy=strategy,
            total_days=len(ordered),
            requested_days=requested_days,
            days=ordered,
            total_stops=sum(len(d.stops) for d in ordered),
            total_distance_meters=sum(d.total_distance_meters for d in ordered),
            total_duration_seconds=sum(d.total_duration_seconds for d in ordered),
        )

    @computed_field
    @property
    def routing_degraded(self) -> bool:
        return any(d.routing_degraded for d in self.days)
