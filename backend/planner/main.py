import logging
import re
from contextlib import asynccontextmanager

import aiohttp
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from planner.api import itinerary
from planner.api.itinerary import limiter
from planner.core.errors import ItineraryPlanningError
from planner.core.settings import Settings
from planner.middleware.logging import RequestLoggingMiddleware
from planner.services.assembler import ItineraryAssembler
from planner.services.place_details import GooglePlaceDetailsClient, PlaceDetailCache, StopEnricher
from planner.services.routing import RoutingGateway

VERSION = "1.0.0"

_KEY_IN_QUERY = re.compile(r'([?&]key=)[^&\s]+')
_GOOGLE_KEY = re.compile(r'AIza[0-9A-Za-z\-_]{35}')
_SECRET_FIELDS = {"key", "api_key", "x-goog-api-key", "google_maps_api_key"}


def redact_api_keys(logger, method_name, event_dict):
    """Scrub Google API keys from every string in the event, however deeply nested."""

    def scrub(v):
        if isinstance(v, str):
            v = _KEY_IN_QUERY.sub(r'\1REDACTED', v)
            return _GOOGLE_KEY.sub('REDACTED', v)
        if isinstance(v, list):
            return [scrub(x) for x in v]
        if isinstance(v, dict):
            return {k: "REDACTED" if str(k).lower() in _SECRET_FIELDS and vv else scrub(vv)
                    for k, vv in v.items()}
        return v

    for k, v in list(event_dict.items()):
        if k.lower() in _SECRET_FIELDS and isinstance(v, str) and v:
            event_dict[k] = "REDACTED"
        else:
            event_dict[k] = scrub(v)
    return event_dict


settings = Settings()

# JSON logs; keys are redacted before rendering so no sink ever sees them
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_api_keys,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(message)s',  # structlog handles formatting
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(settings.LOG_FILE)
    ]
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("planner_starting", routes_api_configured=bool(settings.GOOGLE_MAPS_API_KEY))
    session = aiohttp.ClientSession()
    cache = PlaceDetailCache(ttl_seconds=settings.PLACE_DETAILS_CACHE_TTL_SECONDS)

    app.state.http_session = session
    app.state.place_cache = cache
    app.state.assembler = ItineraryAssembler(RoutingGateway(settings, session=session), settings)
    app.state.enricher = StopEnricher(
        GooglePlaceDetailsClient(settings, session=session),
        cache,
        batch_size=settings.PLACE_DETAILS_BATCH_SIZE,
    )

    yield

    logger.info("planner_shutting_down", cached_places=len(cache))
    try:
        await session.close()
    except Exception as e:
        logger.error("http_session_close_failed", error=str(e))


app = FastAPI(
    title="Itinerary Optimizer API",
    description="Multi-day itinerary clustering, route ordering and scheduling",
    version=VERSION,
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator().instrument(app).expose(app, endpoint="/metrics")


@app.exception_handler(ItineraryPlanningError)
async def planning_error_handler(request: Request, exc: ItineraryPlanningError):
    logger.error(
        "itinerary_planning_failed",
        stage=exc.stage.value,
        error=exc.message,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": exc.message, "stage": exc.stage.value}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


@app.get("/")
def root():
    return {"status": "API active", "version": VERSION}


@app.get("/health")
def health_check(request: Request):
    cache = getattr(request.app.state, "place_cache", None)
    return {
        "status": "healthy",
        "version": VERSION,
        "routing": "routes_api" if settings.GOOGLE_MAPS_API_KEY else "estimate_only",
        "place_cache": cache.stats() if cache is not None else None,
    }


prefix = "/api/v1"

app.include_router(itinerary.router, prefix=prefix)
