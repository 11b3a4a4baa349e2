"""
Per-day leg data: distance and drive time between consecutive waypoints.

RoutingGateway asks the Google Routes API for the whole day in one request.
Whatever goes wrong with that call (transport error, timeout, non-2xx status,
a payload we cannot read) is logged and the day is handed to
FallbackEstimator, which derives the same Leg shape from haversine distance.
Callers never see the failure, only `RoutingResult.degraded`.
"""
from typing import Any, Dict, List, NamedTuple, Optional

import aiohttp
import structlog

from planner.core.errors import RoutingError
from planner.core.geo import estimated_travel_minutes, road_distance_km
from planner.core.models import AccommodationAnchor, Leg, Stop, Waypoint
from planner.core.settings import Settings

logger = structlog.get_logger(__name__)


class RoutingResult(NamedTuple):
    legs: List[Leg]
    degraded: bool


def day_waypoints(stops: List[Stop], accommodation: Optional[AccommodationAnchor] = None) -> List[Waypoint]:
    """Stops in visiting order, bracketed by the accommodation when there is one."""
    if accommodation is None or not stops:
        return list(stops)
    return [accommodation, *stops, accommodation]


def _lat_lng(waypoint: Waypoint) -> Dict[str, float]:
    return {"lat": waypoint.location.lat, "lng": waypoint.location.lng}


def build_route_request(waypoints: List[Waypoint], settings: Settings) -> Dict[str, Any]:
    """Routing request for one day: first/last waypoint as the ends, the rest in between."""
    request = {
        "origin": _lat_lng(waypoints[0]),
        "destination": _lat_lng(waypoints[-1]),
        "travelMode": settings.TRAVEL_MODE,
        "routingPreference": settings.ROUTING_PREFERENCE,
        "avoid": {
            "tolls": settings.AVOID_TOLLS,
            "highways": settings.AVOID_HIGHWAYS,
            "ferries": settings.AVOID_FERRIES,
        },
    }
    if len(waypoints) > 2:
        request["intermediates"] = [_lat_lng(w) for w in waypoints[1:-1]]
    return request


def to_routes_api_body(request: Dict[str, Any]) -> Dict[str, Any]:
    """Translate a routing request into the computeRoutes wire format."""
    def location(point):
        return {"location": {"latLng": {"latitude": point["lat"], "longitude": point["lng"]}}}

    body = {
        "origin": location(request["origin"]),
        "destination": location(request["destination"]),
        "travelMode": request["travelMode"],
        "routingPreference": request["routingPreference"],
        "computeAlternativeRoutes": False,
        "routeModifiers": {
            "avoidTolls": request["avoid"]["tolls"],
            "avoidHighways": request["avoid"]["highways"],
            "avoidFerries": request["avoid"]["ferries"],
        },
        "languageCode": "en-US",
        "units": "METRIC",
    }
    if request.get("intermediates"):
        body["intermediates"] = [location(p) for p in request["intermediates"]]
    return body


def parse_duration_seconds(value: Any) -> int:
    """'1234s' -> 1234"""
    if not isinstance(value, str) or not value.endswith("s"):
        raise RoutingError(f"Unexpected duration value: {value!r}")
    try:
        seconds = int(float(value[:-1]))
    except ValueError as e:
        raise RoutingError(f"Unexpected duration value: {value!r}") from e
    if seconds < 0:
        raise RoutingError(f"Negative duration: {value!r}")
    return seconds


def parse_route_legs(payload: Any, waypoints: List[Waypoint]) -> List[Leg]:
    """
    Read one Leg per consecutive waypoint pair out of a computeRoutes response.

    Raises RoutingError for anything other than
    {"routes": [{"legs": [{"distanceMeters", "duration", "polyline"?}, ...]}]}
    with exactly len(waypoints) - 1 legs.
    """
    if not isinstance(payload, dict):
        raise RoutingError("Response body is not an object")
    routes = payload.get("routes")
    if not isinstance(routes, list) or not routes or not isinstance(routes[0], dict):
        raise RoutingError("Response contains no routes")

    route = routes[0]
    raw_legs = route.get("legs")
    expected = len(waypoints) - 1
    if not isinstance(raw_legs, list) or len(raw_legs) != expected:
        got = len(raw_legs) if isinstance(raw_legs, list) else None
        raise RoutingError(f"Expected {expected} legs, got {got}")

    route_polyline = (route.get("polyline") or {}).get("encodedPolyline")
    legs = []
    for i, raw in enumerate(raw_legs):
        if not isinstance(raw, dict):
            raise RoutingError(f"Leg {i} is not an object")
        distance = raw.get("distanceMeters", 0)
        if isinstance(distance, bool) or not isinstance(distance, int) or distance < 0:
            raise RoutingError(f"Leg {i} has invalid distanceMeters: {distance!r}")
        polyline = (raw.get("polyline") or {}).get("encodedPolyline") or route_polyline
        legs.append(Leg(
            origin=waypoints[i],
            destination=waypoints[i + 1],
            distance_meters=distance,
            duration_seconds=parse_duration_seconds(raw.get("duration", "0s")),
            polyline=polyline,
        ))
    return legs


class FallbackEstimator:
    """Leg estimates from straight-line distance, for when routing is unavailable."""

    def get_legs(self, stops: List[Stop], accommodation: Optional[AccommodationAnchor] = None) -> List[Leg]:
        waypoints = day_waypoints(stops, accommodation)
        legs = []
        for origin, destination in zip(waypoints, waypoints[1:]):
            road_km = road_distance_km(origin, destination)
            legs.append(Leg(
                origin=origin,
                destination=destination,
                distance_meters=round(road_km * 1000),
                duration_seconds=estimated_travel_minutes(road_km) * 60,
                estimated=True,
            ))
        logger.debug("fallback_legs_estimated", legs=len(legs))
        return legs


class RoutingGateway:
    """
    Boundary to the Routes API.

    The aiohttp session is owned by whoever creates the gateway (the app
    lifespan in production); without one a short-lived session is opened per
    call.
    """

    def __init__(
        self,
        settings: Settings,
        session: Optional[aiohttp.ClientSession] = None,
        fallback: Optional[FallbackEstimator] = None,
    ):
        self.settings = settings
        self.session = session
        self.fallback = fallback or FallbackEstimator()

    async def get_legs(self, stops: List[Stop], accommodation: Optional[AccommodationAnchor] = None) -> RoutingResult:
        """Legs for one ordered day. Falls back to estimates on any routing failure."""
        waypoints = day_waypoints(stops, accommodation)
        if len(waypoints) < 2:
            return RoutingResult([], False)

        try:
            legs = await self.fetch_legs(waypoints)
            logger.info("routes_api_legs_received", legs=len(legs), waypoints=len(waypoints))
            return RoutingResult(legs, False)
        except Exception as e:
            logger.warning(
                "routes_api_failed_using_fallback",
                error=str(e),
                error_type=type(e).__name__,
                waypoints=len(waypoints),
            )
            return RoutingResult(self.fallback.get_legs(stops, accommodation), True)

    async def fetch_legs(self, waypoints: List[Waypoint]) -> List[Leg]:
        """One computeRoutes call. Raises on every kind of failure."""
        if not self.settings.GOOGLE_MAPS_API_KEY:
            raise RoutingError("Google Maps API key not configured")

        body = to_routes_api_body(build_route_request(waypoints, self.settings))
        if self.session is not None:
            payload = await self._post(self.session, body)
        else:
            async with aiohttp.ClientSession() as session:
                payload = await self._post(session, body)
        return parse_route_legs(payload, waypoints)

    async def _post(self, session: aiohttp.ClientSession, body: Dict[str, Any]) -> Any:
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.settings.GOOGLE_MAPS_API_KEY,
            "X-Goog-FieldMask": self.settings.ROUTES_FIELD_MASK,
        }
        timeout = aiohttp.ClientTimeout(total=self.settings.ROUTING_TIMEOUT_SECONDS)
        async with session.post(self.settings.ROUTES_API_URL, json=body,
                                headers=headers, timeout=timeout) as response:
            if response.status != 200:
                detail = await response.text()
                raise RoutingError(f"Routes API returned {response.status}: {detail[:200]}")
            try:
                return await response.json()
            except (aiohttp.ContentTypeError, ValueError) as e:
                raise RoutingError("Routes API returned a non-JSON body") from e
