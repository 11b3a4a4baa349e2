from typing import List

import structlog

from planner.core.geo import haversine_km, route_length_km
from planner.core.models import Stop

logger = structlog.get_logger(__name__)

MAX_TWO_OPT_PASSES = 100

# ignore float noise when comparing tour lengths
_IMPROVEMENT_EPSILON_KM = 1e-9


def nearest_neighbor_route(stops: List[Stop]) -> List[Stop]:
    """
    Greedy tour construction.

    Starts at the first stop and keeps walking to the closest stop not yet
    visited. Returns a new list containing every input stop once.
    """
    if len(stops) <= 1:
        return list(stops)

    # work on indices so equal-valued stops are never merged
    unvisited = list(range(1, len(stops)))
    route = [0]

    while unvisited:
        current = stops[route[-1]]
        nearest = min(unvisited, key=lambda i: haversine_km(current, stops[i]))
        unvisited.remove(nearest)
        route.append(nearest)

    return [stops[i] for i in route]


def two_opt(route: List[Stop], max_passes: int = MAX_TWO_OPT_PASSES) -> List[Stop]:
    """
    Improve an open tour by reversing sub-paths.

    The first stop stays fixed. Every pass tries each reversal of
    route[i..j] (j >= i + 2) and keeps it when the tour gets shorter.
    Passes repeat until one finds nothing, or `max_passes` is hit.
    """
    if len(route) < 4:
        return list(route)

    best = list(route)
    best_length = route_length_km(best)
    n = len(best)

    for passes in range(1, max_passes + 1):
        improved = False
        for i in range(1, n - 2):
            for j in range(i + 2, n):
                candidate = best[:i] + best[i:j + 1][::-1] + best[j + 1:]
                length = route_length_km(candidate)
                if length < best_length - _IMPROVEMENT_EPSILON_KM:
                    best, best_length = candidate, length
                    improved = True
        if not improved:
            logger.debug("two_opt_converged", passes=passes, length_km=round(best_length, 3))
            break
    else:
        logger.warning("two_opt_pass_cap_reached", passes=max_passes, stops=n)

    return best


def optimize_route(stops: List[Stop], max_passes: int = MAX_TWO_OPT_PASSES) -> List[Stop]:
    """Order one day's stops to approximately minimize travel distance."""
    if len(stops) <= 2:
        return list(stops)

    initial = nearest_neighbor_route(stops)
    improved = two_opt(initial, max_passes=max_passes)
    logger.debug(
        "route_optimized",
        stops=len(stops),
        nearest_neighbor_km=round(route_length_km(initial), 3),
        optimized_km=round(route_length_km(improved), 3),
    )
    return improved
