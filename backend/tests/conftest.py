import pytest

from planner.core.models import AccommodationAnchor, Coordinate, Stop


def build_stop(stop_id, lat, lng, rating=None, user_ratings_total=None, name=None):
    return Stop(
        id=stop_id,
        name=name or f"Place {stop_id}",
        location=Coordinate(lat=lat, lng=lng),
        rating=rating,
        user_ratings_total=user_ratings_total,
    )


@pytest.fixture
def make_stop():
    return build_stop


@pytest.fixture
def city_stops():
    """Twelve stops spread over three neighbourhoods of Kyoto."""
    centers = [(35.0116, 135.7681), (34.9671, 135.7727), (35.0394, 135.7292)]
    stops = []
    for c, (lat, lng) in enumerate(centers):
        for i in range(4):
            stops.append(build_stop(f"s{c}{i}", lat + i * 0.003, lng - i * 0.002,
                                    rating=3.5 + i * 0.4, user_ratings_total=50 + i * 400))
    return stops


@pytest.fixture
def hotel():
    return AccommodationAnchor(name="Hotel", location=Coordinate(lat=35.0050, lng=135.7590))
