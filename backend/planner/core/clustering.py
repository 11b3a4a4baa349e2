"""
Day-group clustering.

Splits a flat list of stops into one group per day. Three interchangeable
strategies are available, selected by `ClusteringStrategy`:

- geographical:   k-means++ over coordinates (haversine metric)
- balanced:       geographical, then rebalanced so no day carries more than
                  one stop over the ideal ceil(n/k)
- time-optimized: greedy day-by-day filling against a daily time budget

All randomness comes from an injectable `random.Random`, so a fixed seed
gives a reproducible split.
"""
import math
import random
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

import structlog

from planner.core.geo import centroid, haversine_km, visit_duration_minutes
from planner.core.models import ClusteringStrategy, Coordinate, ItineraryOptions, Stop

logger = structlog.get_logger(__name__)

KMEANS_MAX_ITERATIONS = 100

DEFAULT_TARGET_DAY_MINUTES = 9 * 60
DEFAULT_MAX_DAY_MINUTES = 10 * 60
MIN_TARGET_DAY_MINUTES = 4 * 60
TRANSITION_BUFFER_MINUTES = 10

DayGroups = List[List[Stop]]


class BaseClusterer(ABC):
    strategy: ClusteringStrategy

    def __init__(self, rng: Optional[random.Random] = None,
                 max_iterations: int = KMEANS_MAX_ITERATIONS):
        self.rng = rng or random.Random()
        self.max_iterations = max_iterations

    @abstractmethod
    def split(self, stops: List[Stop], k: int,
              options: Optional[ItineraryOptions] = None) -> DayGroups:
        """Partition `stops` into `k` non-empty groups (1 <= k < len(stops))."""


class GeographicalClusterer(BaseClusterer):
    strategy = ClusteringStrategy.GEOGRAPHICAL

    def split(self, stops, k, options=None):
        centroids = self._seed_centroids(stops, k)
        groups: DayGroups = [[] for _ in range(k)]

        for iteration in range(self.max_iterations):
            groups = [[] for _ in range(k)]
            for stop in stops:
                nearest = min(range(k), key=lambda i: haversine_km(stop, centroids[i]))
                groups[nearest].append(stop)

            # empty clusters keep their previous centroid
            new_centroids = [
                centroid(group) if group else centroids[i]
                for i, group in enumerate(groups)
            ]
            if new_centroids == centroids:
                logger.debug("kmeans_converged", iterations=iteration + 1)
                break
            centroids = new_centroids
        else:
            logger.debug("kmeans_iteration_cap_reached", iterations=self.max_iterations)

        return _fill_empty_groups(groups)

    def _seed_centroids(self, stops: List[Stop], k: int) -> List[Coordinate]:
        """k-means++: spread the initial centroids apart."""
        centroids = [self.rng.choice(stops).location]

        while len(centroids) < k:
            weights = [
                min(haversine_km(stop, c) for c in centroids) ** 2
                for stop in stops
            ]
            total = sum(weights)
            if total <= 0:
                # every stop sits on a centroid already
                centroids.append(self.rng.choice(stops).location)
                continue

            threshold = self.rng.random() * total
            cumulative = 0.0
            chosen = stops[-1]
            for stop, weight in zip(stops, weights):
                cumulative += weight
                if cumulative >= threshold:
                    chosen = stop
                    break
            centroids.append(chosen.location)

        return centroids


class BalancedClusterer(GeographicalClusterer):
    strategy = ClusteringStrategy.BALANCED

    def split(self, stops, k, options=None):
        groups = super().split(stops, k, options)
        ideal = math.ceil(len(stops) / k)
        logger.debug("balancing_clusters", stops=len(stops), days=k, ideal_per_day=ideal)
        return rebalance(groups, ideal)


class TimeOptimizedClusterer(BaseClusterer):
    strategy = ClusteringStrategy.TIME_OPTIMIZED

    def split(self, stops, k, options=None):
        target, cap = day_budget_minutes(options)
        remaining = list(stops)
        groups: DayGroups = []

        for day in range(k):
            if not remaining:
                break

            # ties keep the earliest stop
            seed = max(remaining, key=lambda s: s.rating or 0)
            remaining.remove(seed)
            group = [seed]
            day_minutes = visit_duration_minutes(seed)
            # leave one seed for every day still to build
            reserved = k - day - 1

            while len(remaining) > reserved and day_minutes < target:
                last = group[-1]
                nearest = min(remaining, key=lambda s: haversine_km(last, s))
                # rough 30 km/h estimate
                travel = round(haversine_km(last, nearest) * 2)
                to_add = visit_duration_minutes(nearest) + travel + TRANSITION_BUFFER_MINUTES
                if day_minutes + to_add > cap:
                    break
                group.append(nearest)
                remaining.remove(nearest)
                day_minutes += to_add

            groups.append(group)
            logger.debug("time_optimized_day_built", day=day + 1, stops=len(group),
                         estimated_minutes=day_minutes)

        while remaining:
            stop = remaining.pop()
            target_day = min(range(len(groups)), key=lambda i: len(groups[i]))
            groups[target_day].append(stop)
            logger.debug("leftover_stop_assigned", stop_id=stop.id, day=target_day + 1)

        return groups


def day_budget_minutes(options: Optional[ItineraryOptions]) -> tuple:
    """(target, cap) day length in minutes for time-optimized clustering."""
    if options is None or not options.has_fixed_end:
        return DEFAULT_TARGET_DAY_MINUTES, DEFAULT_MAX_DAY_MINUTES

    start_h, start_m = map(int, options.start_time.split(":"))
    end_h, end_m = map(int, options.fixed_end_time.split(":"))
    window = (end_h * 60 + end_m) - (start_h * 60 + start_m)
    if window <= 0:
        logger.warning("fixed_end_before_start", start_time=options.start_time,
                       fixed_end_time=options.fixed_end_time)
        return DEFAULT_TARGET_DAY_MINUTES, DEFAULT_MAX_DAY_MINUTES

    return max(window * 0.9, MIN_TARGET_DAY_MINUTES), window


def rebalance(groups: DayGroups, ideal: int) -> DayGroups:
    """
    Move stops out of groups holding more than ideal+1 stops.

    Each move takes the stop closest to the centroid of the smallest group
    below `ideal`. Stops when an oversized group has no such target.
    """
    max_allowed = ideal + 1
    groups = sorted((list(g) for g in groups), key=len, reverse=True)
    moved = 0

    for i, group in enumerate(groups):
        while len(group) > max_allowed:
            candidates = [j for j, g in enumerate(groups) if j != i and len(g) < ideal]
            if not candidates:
                break
            target = groups[min(candidates, key=lambda j: len(groups[j]))]
            target_center = centroid(target)
            closest = min(group, key=lambda s: haversine_km(s, target_center))
            group.remove(closest)
            target.append(closest)
            moved += 1

    if moved:
        logger.debug("clusters_rebalanced", moved=moved, sizes=[len(g) for g in groups])
    return groups


def _fill_empty_groups(groups: DayGroups) -> DayGroups:
    """Give each empty group the outlying stop of the largest group."""
    groups = [list(g) for g in groups]
    for empty in (g for g in groups if not g):
        donor = max(groups, key=len)
        if len(donor) < 2:
            break
        center = centroid(donor)
        outlier = max(donor, key=lambda s: haversine_km(s, center))
        donor.remove(outlier)
        empty.append(outlier)
    return groups


CLUSTERERS: Dict[ClusteringStrategy, Type[BaseClusterer]] = {
    ClusteringStrategy.GEOGRAPHICAL: GeographicalClusterer,
    ClusteringStrategy.BALANCED: BalancedClusterer,
    ClusteringStrategy.TIME_OPTIMIZED: TimeOptimizedClusterer,
}


def cluster(
    stops: List[Stop],
    day_count: int,
    strategy: ClusteringStrategy = ClusteringStrategy.BALANCED,
    options: Optional[ItineraryOptions] = None,
    rng: Optional[random.Random] = None,
    max_iterations: int = KMEANS_MAX_ITERATIONS,
) -> DayGroups:
    """
    Partition `stops` into day groups.

    Every stop lands in exactly one group. When there are at least as many
    days as stops (or `day_count` is not positive) each stop gets its own day.
    """
    if not stops:
        return []
    if day_count <= 0 or day_count >= len(stops):
        return [[stop] for stop in stops]

    clusterer = CLUSTERERS[ClusteringStrategy(strategy)](rng=rng, max_iterations=max_iterations)
    groups = clusterer.split(list(stops), day_count, options)
    logger.info("stops_clustered", strategy=clusterer.strategy.value, stops=len(stops),
                days=day_count, sizes=[len(g) for g in groups])
    return groups
