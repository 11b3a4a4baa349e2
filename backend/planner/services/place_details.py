"""
Place-detail lookup with a short-lived cache.

The cache is a plain object created by the app lifespan and handed to the
StopEnricher; nothing here keeps state at module level.
"""
import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import aiohttp
import structlog

from planner.core.errors import NoStopsResolvedError
from planner.core.models import Coordinate, Stop
from planner.core.settings import Settings

logger = structlog.get_logger(__name__)

PLACE_DETAIL_FIELDS = "place_id,name,geometry,formatted_address,rating,user_ratings_total"


class PlaceDetailCache:
    """Stops keyed by place id, each entry valid for `ttl_seconds` after insert."""

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Stop, float]] = {}

    def get(self, place_id: str) -> Optional[Stop]:
        entry = self._entries.get(place_id)
        if entry is None:
            return None
        stop, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[place_id]
            return None
        return stop

    def put(self, place_id: str, stop: Stop) -> None:
        self.purge_expired()
        self._entries[place_id] = (stop, self._clock())

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [pid for pid, (_, ts) in self._entries.items() if now - ts >= self.ttl_seconds]
        for pid in expired:
            del self._entries[pid]
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {"size": len(self._entries), "ttl_seconds": self.ttl_seconds}

    def __len__(self) -> int:
        return len(self._entries)


def stop_from_place_details(place_id: str, details: Dict[str, Any]) -> Optional[Stop]:
    """Build a Stop from a Place Details `result` object, or None without geometry."""
    location = (details.get("geometry") or {}).get("location")
    if not location or "lat" not in location or "lng" not in location:
        return None
    return Stop(
        id=place_id,
        name=details.get("name") or place_id,
        location=Coordinate(lat=location["lat"], lng=location["lng"]),
        rating=details.get("rating"),
        user_ratings_total=details.get("user_ratings_total"),
        address=details.get("formatted_address") or details.get("vicinity"),
    )


class PlaceDetailsFetcher(Protocol):
    async def fetch(self, place_id: str) -> Optional[Stop]:
        ...


class GooglePlaceDetailsClient:
    """Place Details (legacy JSON API) lookups returning Stops."""

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.session = session

    async def fetch(self, place_id: str) -> Optional[Stop]:
        if not self.settings.GOOGLE_MAPS_API_KEY:
            logger.error("place_details_api_key_missing")
            return None
        if self.session is not None:
            return await self._fetch(self.session, place_id)
        async with aiohttp.ClientSession() as session:
            return await self._fetch(session, place_id)

    async def _fetch(self, session: aiohttp.ClientSession, place_id: str) -> Optional[Stop]:
        params = {
            "place_id": place_id,
            "fields": PLACE_DETAIL_FIELDS,
            "key": self.settings.GOOGLE_MAPS_API_KEY,
        }
        timeout = aiohttp.ClientTimeout(total=self.settings.ROUTING_TIMEOUT_SECONDS)
        async with session.get(self.settings.PLACE_DETAILS_API_URL, params=params,
                               timeout=timeout) as response:
            if response.status != 200:
                logger.warning("place_details_http_error", place_id=place_id, status=response.status)
                return None
            data = await response.json()

        if data.get("status") != "OK":
            logger.warning("place_details_api_error", place_id=place_id,
                           status=data.get("status"), error=data.get("error_message"))
            return None
        return stop_from_place_details(place_id, data.get("result") or {})


class StopEnricher:
    """
    Resolve place ids into Stops.

    Cached entries are used as-is; the rest are fetched concurrently in
    batches of `batch_size`. Ids that fail are logged and skipped.
    """

    def __init__(self, fetcher: PlaceDetailsFetcher, cache: PlaceDetailCache, batch_size: int = 10):
        self.fetcher = fetcher
        self.cache = cache
        self.batch_size = max(1, batch_size)

    async def resolve(self, place_ids: List[str]) -> List[Stop]:
        resolved: Dict[str, Stop] = {}
        missing = []
        for pid in dict.fromkeys(place_ids):
            cached = self.cache.get(pid)
            if cached is not None:
                resolved[pid] = cached
            else:
                missing.append(pid)

        logger.info("place_details_lookup", requested=len(place_ids), cached=len(resolved),
                    to_fetch=len(missing))

        for start in range(0, len(missing), self.batch_size):
            batch = missing[start:start + self.batch_size]
            results = await asyncio.gather(
                *(self.fetcher.fetch(pid) for pid in batch),
                return_exceptions=True,
            )
            for pid, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning("place_details_fetch_failed", place_id=pid, error=str(result))
                    continue
                if result is None:
                    logger.warning("place_details_unusable", place_id=pid)
                    continue
                self.cache.put(pid, result)
                resolved[pid] = result

        if not resolved:
            raise NoStopsResolvedError("Unable to fetch any place details")
        if len(resolved) < len(set(place_ids)):
            logger.warning("place_details_partial", resolved=len(resolved), requested=len(set(place_ids)))

        return [resolved[pid] for pid in dict.fromkeys(place_ids) if pid in resolved]
