from enum import Enum


class PlanningStage(str, Enum):
    CLUSTERING = "clustering"
    OPTIMIZATION = "optimization"
    ROUTING = "routing"
    AGGREGATION = "aggregation"


class ItineraryPlanningError(Exception):
    """Raised when no plan can be produced; `stage` says where it broke."""

    def __init__(self, stage: PlanningStage, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"{stage.value}: {message}")


class RoutingError(Exception):
    """Routing service call failed or returned something unusable."""


class NoStopsResolvedError(Exception):
    """None of the requested place ids could be turned into stops."""
