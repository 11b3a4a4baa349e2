import asyncio
import random
import time
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog

from planner.core.clustering import cluster
from planner.core.errors import ItineraryPlanningError, PlanningStage
from planner.core.models import (
    AccommodationAnchor, ClusteringStrategy, DayPlan, ItineraryOptions, ItineraryPlan, Stop,
)
from planner.core.route_optimizer import optimize_route
from planner.core.scheduler import schedule_day
from planner.core.settings import Settings
from planner.services.routing import RoutingGateway

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def performance_timer(operation: str):
    """Context manager for timing operations"""
    start = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info("operation_timed", operation=operation, duration_ms=round(duration_ms, 2))


class ItineraryAssembler:
    """
    Runs the whole pipeline for one request.

    Clustering and route optimization happen once up front; each day then
    fetches its legs and builds its schedule as an independent task. A day
    whose routing call fails is estimated locally and flagged, without
    touching the other days.
    """

    def __init__(self, gateway: RoutingGateway, settings: Optional[Settings] = None,
                 rng: Optional[random.Random] = None):
        self.gateway = gateway
        self.settings = settings or gateway.settings
        self.rng = rng

    async def assemble(
        self,
        stops: List[Stop],
        day_count: int,
        strategy: ClusteringStrategy = ClusteringStrategy.BALANCED,
        options: Optional[ItineraryOptions] = None,
        accommodation: Optional[AccommodationAnchor] = None,
        city: Optional[str] = None,
    ) -> ItineraryPlan:
        strategy = ClusteringStrategy(strategy)
        options = options or ItineraryOptions(start_time=self.settings.DEFAULT_START_TIME)
        log = logger.bind(stops=len(stops), days=day_count, strategy=strategy.value)
        log.info("itinerary_assembly_started", city=city, has_accommodation=accommodation is not None)

        async with performance_timer("itinerary_assembly"):
            try:
                rng = self.rng or random.Random(self.settings.CLUSTERING_SEED)
                groups = cluster(stops, day_count, strategy, options, rng=rng,
                                 max_iterations=self.settings.KMEANS_MAX_ITERATIONS)
            except Exception as e:
                log.exception("clustering_failed")
                raise ItineraryPlanningError(PlanningStage.CLUSTERING, str(e)) from e

            try:
                ordered = [
                    optimize_route(group, max_passes=self.settings.ROUTE_OPTIMIZER_MAX_PASSES)
                    for group in groups
                ]
            except Exception as e:
                log.exception("route_optimization_failed")
                raise ItineraryPlanningError(PlanningStage.OPTIMIZATION, str(e)) from e

            try:
                days = await asyncio.gather(*(
                    self._plan_day(index, day_stops, options, accommodation)
                    for index, day_stops in enumerate(ordered, start=1)
                ))
            except Exception as e:
                log.exception("day_planning_failed")
                raise ItineraryPlanningError(PlanningStage.ROUTING, str(e)) from e

            try:
                plan = ItineraryPlan.from_days(list(days), strategy,
                                               requested_days=day_count, city=city)
            except Exception as e:
                log.exception("aggregation_failed")
                raise ItineraryPlanningError(PlanningStage.AGGREGATION, str(e)) from e

        log.info(
            "itinerary_assembled",
            total_days=plan.total_days,
            total_distance_km=round(plan.total_distance_meters / 1000, 1),
            total_duration_h=round(plan.total_duration_seconds / 3600, 1),
            degraded_days=[d.day for d in plan.days if d.routing_degraded],
        )
        return plan

    async def _plan_day(self, day: int, stops: List[Stop], options: ItineraryOptions,
                        accommodation: Optional[AccommodationAnchor]) -> DayPlan:
        routing = await self.gateway.get_legs(stops, accommodation)
        schedule = schedule_day(stops, routing.legs, options.start_time, options)
        return DayPlan.build(
            day=day,
            stops=stops,
            legs=routing.legs,
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            routing_degraded=routing.degraded,
        )
