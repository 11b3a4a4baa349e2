import random
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from planner.core.errors import ItineraryPlanningError, PlanningStage
from planner.core.settings import Settings
from planner.main import app
from planner.services.assembler import ItineraryAssembler
from planner.services.place_details import PlaceDetailCache, StopEnricher
from planner.services.routing import RoutingGateway

OPTIMIZE = "/api/v1/itineraries/optimize"
OPTIMIZE_BY_IDS = "/api/v1/itineraries/optimize-by-ids"


@pytest.fixture
def client():
    with TestClient(app) as c:
        # estimates only, never the network
        app.state.assembler = ItineraryAssembler(
            RoutingGateway(Settings(GOOGLE_MAPS_API_KEY="")), rng=random.Random(7)
        )
        yield c


def stop_payload(stop):
    return stop.model_dump(mode="json")


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "API active"


def test_health_reports_cache(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["place_cache"]["size"] == 0


def test_request_id_is_echoed(client):
    response = client.get("/", headers={"X-Request-ID": "trace-123"})
    assert response.headers["X-Request-ID"] == "trace-123"
    assert client.get("/").headers["X-Request-ID"]


def test_optimize(client, city_stops):
    response = client.post(OPTIMIZE, json={
        "stops": [stop_payload(s) for s in city_stops],
        "days": 3,
        "strategy": "balanced",
        "city": "Kyoto",
    })

    assert response.status_code == 200
    body = response.json()
    assert body["total_days"] == 3
    assert body["total_stops"] == 12
    assert body["routing_degraded"] is True
    leg = body["days"][0]["legs"][0]
    assert leg["distance_text"].endswith(" km")
    assert leg["estimated"] is True
    assert body["total_distance_meters"] == sum(d["total_distance_meters"] for d in body["days"])


def test_optimize_with_accommodation_and_fixed_end(client, city_stops, hotel):
    response = client.post(OPTIMIZE, json={
        "stops": [stop_payload(s) for s in city_stops[:4]],
        "days": 1,
        "accommodation": hotel.model_dump(mode="json"),
        "options": {"start_time": "08:30", "end_time_preference": "fixed", "fixed_end_time": "09:00"},
    })

    assert response.status_code == 200
    day = response.json()["days"][0]
    assert len(day["legs"]) == 5
    assert day["start_time"] == "08:30"
    assert day["end_time"] == "09:00 (may run late)"


@pytest.mark.parametrize("change", [
    {"days": 0},
    {"days": Settings().MAX_ITINERARY_DAYS + 1},
    {"stops": []},
    {"strategy": "fastest"},
    {"options": {"end_time_preference": "fixed"}},
    {"options": {"start_time": "25:00"}},
])
def test_optimize_rejects_invalid_requests(client, city_stops, change):
    payload = {"stops": [stop_payload(s) for s in city_stops[:3]], "days": 2, **change}
    assert client.post(OPTIMIZE, json=payload).status_code == 422


def test_optimize_rejects_duplicate_stop_ids(client, make_stop):
    stops = [make_stop("dup", 35.0, 135.0), make_stop("dup", 35.1, 135.1)]
    response = client.post(OPTIMIZE, json={"stops": [stop_payload(s) for s in stops], "days": 1})
    assert response.status_code == 422


def test_planning_error_reports_stage(client, city_stops):
    assembler = MagicMock()
    assembler.assemble = AsyncMock(
        side_effect=ItineraryPlanningError(PlanningStage.AGGREGATION, "totals mismatch")
    )
    app.state.assembler = assembler

    response = client.post(OPTIMIZE, json={"stops": [stop_payload(s) for s in city_stops], "days": 2})

    assert response.status_code == 500
    assert response.json() == {"detail": "totals mismatch", "stage": "aggregation"}


def test_optimize_by_ids(client, city_stops):
    by_id = {s.id: s for s in city_stops}
    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(side_effect=lambda pid: by_id.get(pid))
    app.state.enricher = StopEnricher(fetcher, PlaceDetailCache())

    response = client.post(OPTIMIZE_BY_IDS, json={"place_ids": list(by_id) + ["unknown"], "days": 3})

    assert response.status_code == 200
    assert response.json()["total_stops"] == 12


def test_optimize_by_ids_nothing_resolved(client):
    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(return_value=None)
    app.state.enricher = StopEnricher(fetcher, PlaceDetailCache())

    response = client.post(OPTIMIZE_BY_IDS, json={"place_ids": ["x", "y"], "days": 1})

    assert response.status_code == 404


def test_optimize_by_ids_requires_ids(client):
    response = client.post(OPTIMIZE_BY_IDS, json={"place_ids": ["  "], "days": 1})
    assert response.status_code == 422
