import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from planner.api.schemas import OptimizeByIdsRequest, OptimizeRequest, PlanningErrorResponse
from planner.core.errors import NoStopsResolvedError
from planner.core.models import ItineraryPlan
from planner.core.settings import Settings
from planner.services.assembler import ItineraryAssembler
from planner.services.place_details import StopEnricher

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/itineraries", tags=["itineraries"])

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)

_settings = Settings()
OPTIMIZE_LIMIT = _settings.RATE_LIMIT_OPTIMIZE if _settings.ENABLE_RATE_LIMITING else "1000/minute"


def get_assembler(request: Request) -> ItineraryAssembler:
    return request.app.state.assembler


def get_enricher(request: Request) -> StopEnricher:
    return request.app.state.enricher


@router.post("/optimize",
    response_model=ItineraryPlan,
    status_code=status.HTTP_200_OK,
    responses={
        422: {"description": "Invalid stops, day count or options"},
        429: {"description": "Rate limit exceeded"},
        500: {"model": PlanningErrorResponse, "description": "Planning failed at the reported stage"}
    },
    summary="Optimize a multi-day itinerary",
    description="Splits the stops into days, orders each day and attaches routed legs and times"
)
@limiter.limit(OPTIMIZE_LIMIT)
async def optimize_itinerary(
    request: Request,
    payload: OptimizeRequest,
    assembler: ItineraryAssembler = Depends(get_assembler),
):
    """Plan an itinerary from explicit stops"""
    return await assembler.assemble(
        payload.stops,
        payload.days,
        strategy=payload.strategy,
        options=payload.options,
        accommodation=payload.accommodation,
        city=payload.city,
    )


@router.post("/optimize-by-ids",
    response_model=ItineraryPlan,
    responses={
        404: {"description": "None of the place ids could be resolved"},
        422: {"description": "Invalid place ids, day count or options"},
        429: {"description": "Rate limit exceeded"},
        500: {"model": PlanningErrorResponse, "description": "Planning failed at the reported stage"}
    },
    summary="Optimize an itinerary from place ids",
    description="Resolves place ids through Place Details (cached), then plans as /optimize"
)
@limiter.limit(OPTIMIZE_LIMIT)
async def optimize_itinerary_by_ids(
    request: Request,
    payload: OptimizeByIdsRequest,
    assembler: ItineraryAssembler = Depends(get_assembler),
    enricher: StopEnricher = Depends(get_enricher),
):
    try:
        stops = await enricher.resolve(payload.place_ids)
    except NoStopsResolvedError as e:
        logger.warning("no_stops_resolved", place_ids=len(payload.place_ids))
        raise HTTPException(status_code=404, detail=str(e))

    return await assembler.assemble(
        stops,
        payload.days,
        strategy=payload.strategy,
        options=payload.options,
        accommodation=payload.accommodation,
        city=payload.city,
    )
