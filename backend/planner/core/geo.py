import math
from typing import Iterable, Union

from planner.core.models import Coordinate, Stop, AccommodationAnchor

EARTH_RADIUS_KM = 6371.0

# roads are typically 1.3-1.5x longer than the straight line
ROAD_FACTOR = 1.4

URBAN_SPEED_KMH = 25
RURAL_SPEED_KMH = 35
URBAN_DISTANCE_KM = 5

BASE_VISIT_MINUTES = 45
MAX_VISIT_MINUTES = 90

Located = Union[Coordinate, Stop, AccommodationAnchor]


def _coord(p: Located) -> Coordinate:
    return p if isinstance(p, Coordinate) else p.location


def haversine_km(a: Located, b: Located) -> float:
    """Great-circle distance in km between two points on a spherical Earth."""
    ca, cb = _coord(a), _coord(b)
    d_lat = math.radians(cb.lat - ca.lat)
    d_lng = math.radians(cb.lng - ca.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(ca.lat)) * math.cos(math.radians(cb.lat)) * math.sin(d_lng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def road_distance_km(a: Located, b: Located) -> float:
    """Straight-line distance scaled up to approximate the road network."""
    return haversine_km(a, b) * ROAD_FACTOR


def average_speed_kmh(road_km: float) -> int:
    return URBAN_SPEED_KMH if road_km < URBAN_DISTANCE_KM else RURAL_SPEED_KMH


def estimated_travel_minutes(road_km: float) -> int:
    """Whole minutes to drive `road_km` at the urban/rural average speed."""
    return round(road_km / average_speed_kmh(road_km) * 60)


def route_length_km(points: Iterable[Located]) -> float:
    pts = list(points)
    return sum(haversine_km(pts[i], pts[i + 1]) for i in range(len(pts) - 1))


def centroid(points: Iterable[Located]) -> Coordinate:
    """Mean coordinate of the given points, (0, 0) when there are none."""
    coords = [_coord(p) for p in points]
    if not coords:
        return Coordinate(lat=0, lng=0)
    return Coordinate(
        lat=sum(c.lat for c in coords) / len(coords),
        lng=sum(c.lng for c in coords) / len(coords),
    )


def visit_duration_minutes(stop: Stop) -> int:
    """
    Suggested time on site, from popularity signals.

    Higher rated and more reviewed places get longer, up to MAX_VISIT_MINUTES.
    """
    duration = BASE_VISIT_MINUTES

    if stop.rating:
        if stop.rating >= 4.5:
            duration += 15
        elif stop.rating >= 4.0:
            duration += 10
        elif stop.rating >= 3.5:
            duration += 5

    if stop.user_ratings_total:
        if stop.user_ratings_total > 1000:
            duration += 15
        elif stop.user_ratings_total > 500:
            duration += 10
        elif stop.user_ratings_total > 100:
            duration += 5

    return min(duration, MAX_VISIT_MINUTES)
