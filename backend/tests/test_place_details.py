from unittest.mock import AsyncMock, MagicMock

import pytest

from planner.core.errors import NoStopsResolvedError
from planner.core.settings import Settings
from planner.services.place_details import (
    GooglePlaceDetailsClient, PlaceDetailCache, StopEnricher, stop_from_place_details,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def details(lat=35.0, lng=135.0, **extra):
    return {"name": "Kinkaku-ji", "geometry": {"location": {"lat": lat, "lng": lng}},
            "rating": 4.6, "user_ratings_total": 80000, "formatted_address": "Kyoto", **extra}


class TestPlaceDetailCache:

    def test_entries_expire_after_ttl(self, make_stop):
        clock = FakeClock()
        cache = PlaceDetailCache(ttl_seconds=300, clock=clock)
        stop = make_stop("p1", 35.0, 135.0)
        cache.put("p1", stop)

        clock.now += 299
        assert cache.get("p1") == stop
        clock.now += 1
        assert cache.get("p1") is None
        assert len(cache) == 0

    def test_purge_expired(self, make_stop):
        clock = FakeClock()
        cache = PlaceDetailCache(ttl_seconds=60, clock=clock)
        cache.put("old", make_stop("old", 0, 0))
        clock.now += 30
        cache.put("new", make_stop("new", 0, 0))
        clock.now += 40

        assert cache.purge_expired() == 1
        assert cache.stats() == {"size": 1, "ttl_seconds": 60}

    def test_insert_drops_expired_entries(self, make_stop):
        clock = FakeClock()
        cache = PlaceDetailCache(ttl_seconds=1, clock=clock)
        for i in range(1000):
            cache.put(f"p{i}", make_stop(f"p{i}", 35.0, 135.0))
            clock.now += 10
        assert len(cache) == 1

        clock.now += 10
        cache.put("fresh", make_stop("fresh", 35.0, 135.0))
        assert len(cache) == 1
        assert cache.get("fresh") is not None

    def test_miss(self):
        assert PlaceDetailCache().get("nothing") is None


def test_stop_from_place_details():
    stop = stop_from_place_details("abc", details())
    assert stop.id == "abc"
    assert stop.name == "Kinkaku-ji"
    assert stop.rating == 4.6
    assert stop.address == "Kyoto"
    assert stop_from_place_details("abc", {"name": "Nowhere"}) is None


def fetcher_for(results):
    """Fake fetcher: `results` maps place id to a Stop, None or an exception."""
    async def fetch(place_id):
        value = results[place_id]
        if isinstance(value, Exception):
            raise value
        return value

    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(side_effect=fetch)
    return fetcher


class TestStopEnricher:

    @pytest.mark.asyncio
    async def test_resolves_in_input_order(self, make_stop):
        stops = {pid: make_stop(pid, 35.0, 135.0) for pid in ("a", "b", "c", "d", "e")}
        fetcher = fetcher_for(stops)
        enricher = StopEnricher(fetcher, PlaceDetailCache(), batch_size=2)

        resolved = await enricher.resolve(["c", "a", "e", "b", "d", "a"])

        assert [s.id for s in resolved] == ["c", "a", "e", "b", "d"]
        assert fetcher.fetch.await_count == 5

    @pytest.mark.asyncio
    async def test_cache_hits_skip_fetch(self, make_stop):
        cache = PlaceDetailCache()
        cache.put("a", make_stop("a", 35.0, 135.0))
        fetcher = fetcher_for({"b": make_stop("b", 35.1, 135.1)})
        enricher = StopEnricher(fetcher, cache)

        resolved = await enricher.resolve(["a", "b"])

        assert [s.id for s in resolved] == ["a", "b"]
        fetcher.fetch.assert_awaited_once_with("b")
        assert cache.get("b") is not None

    @pytest.mark.asyncio
    async def test_failures_are_skipped(self, make_stop):
        fetcher = fetcher_for({
            "ok": make_stop("ok", 35.0, 135.0),
            "gone": None,
            "broken": RuntimeError("timeout"),
        })
        enricher = StopEnricher(fetcher, PlaceDetailCache())

        resolved = await enricher.resolve(["gone", "ok", "broken"])

        assert [s.id for s in resolved] == ["ok"]

    @pytest.mark.asyncio
    async def test_nothing_resolved_raises(self):
        fetcher = fetcher_for({"x": None, "y": RuntimeError("boom")})
        enricher = StopEnricher(fetcher, PlaceDetailCache())

        with pytest.raises(NoStopsResolvedError):
            await enricher.resolve(["x", "y"])


def mock_get_session(status=200, payload=None):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    session = MagicMock()
    session.get.return_value.__aenter__.return_value = response
    session.get.return_value.__aexit__.return_value = False
    return session


class TestGooglePlaceDetailsClient:

    @pytest.mark.asyncio
    async def test_fetch_builds_stop(self):
        session = mock_get_session(payload={"status": "OK", "result": details()})
        client = GooglePlaceDetailsClient(Settings(GOOGLE_MAPS_API_KEY="test-key"), session=session)

        stop = await client.fetch("place-1")

        assert stop.id == "place-1"
        _, kwargs = session.get.call_args
        assert kwargs["params"]["place_id"] == "place-1"
        assert "geometry" in kwargs["params"]["fields"]

    @pytest.mark.asyncio
    async def test_api_error_status(self):
        session = mock_get_session(payload={"status": "NOT_FOUND"})
        client = GooglePlaceDetailsClient(Settings(GOOGLE_MAPS_API_KEY="test-key"), session=session)
        assert await client.fetch("place-1") is None

    @pytest.mark.asyncio
    async def test_http_error(self):
        session = mock_get_session(status=500)
        client = GooglePlaceDetailsClient(Settings(GOOGLE_MAPS_API_KEY="test-key"), session=session)
        assert await client.fetch("place-1") is None

    @pytest.mark.asyncio
    async def test_missing_key(self):
        session = mock_get_session()
        client = GooglePlaceDetailsClient(Settings(GOOGLE_MAPS_API_KEY=""), session=session)
        assert await client.fetch("place-1") is None
        session.get.assert_not_called()
