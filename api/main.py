"""
Safe Transit Routing API - FastAPI Main Application

A RESTful API for safety-weighted bus and train routing in Chicago using
live CTA data and Chicago Police Department incident data.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
import uvicorn

from safe_transit_routing import __version__
from safe_transit_routing.exceptions import InvalidQuery, ProviderUnavailable, TopologyLoadError

from api.routes.routing import router as routing_router
from api.routes.safety import router as safety_router
from api.services.routing_service import ServiceNotReady, routing_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle - startup and shutdown events.
    """
    # Startup
    logger.info("Starting Safe Transit Routing API...")
    try:
        routing_service.start()
    except TopologyLoadError as e:
        logger.critical(f"Cannot start without transit topology: {e}")
        raise

    health = routing_service.get_health_status()
    logger.info(f"Routing service ready: snapshot v{health.snapshot_version}, "
                f"{health.crime_incidents_count} crime incidents loaded")

    yield

    # Shutdown
    logger.info("Shutting down Safe Transit Routing API...")
    routing_service.shutdown()


# Create FastAPI application
app = FastAPI(
    title="Safe Transit Routing API",
    description="""
    **Find Chicago transit routes that balance travel time against personal safety**

    Itineraries combine walking, CTA buses and 'L' trains over a live,
    time-aware transit graph. Every segment is scored against a crime risk
    surface built from Chicago Data Portal incidents, and the search trades
    time against safety according to the rider's preference.

    ## Features

    - **Safety-Weighted Routing**: up to three ranked, materially different itineraries
    - **Live Predictions**: CTA Bus Tracker and Train Tracker, with schedule fallback
    - **Confidence Flags**: legs marked live or scheduled, safety scores high or low confidence
    - **Safety Scoring**: risk score for any polyline or bounding box
    - **GeoJSON Output**: one FeatureCollection per itinerary

    ## Quick Start

    1. Check service health: `GET /api/routing/health`
    2. Calculate a route: `POST /api/routing/calculate`
    3. Score a path: `POST /api/safety/score`
    """,
    version=__version__,
    lifespan=lifespan
)

# Add CORS middleware for web applications
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "message": message,
            "details": details
        }
    )


# Custom exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle request validation errors with detailed information.
    """
    logger.warning(f"Validation error for {request.url}: {exc}")
    return _error(422, "validation_error", "Request validation failed", jsonable_encoder(exc.errors()))


@app.exception_handler(InvalidQuery)
async def invalid_query_handler(request: Request, exc: InvalidQuery):
    logger.warning(f"Invalid query for {request.url}: {exc}")
    return _error(400, "invalid_query", str(exc))


@app.exception_handler(ProviderUnavailable)
async def provider_unavailable_handler(request: Request, exc: ProviderUnavailable):
    logger.warning(f"Upstream provider {exc.provider or 'unknown'} unavailable for {request.url}: {exc}")
    return _error(503, "provider_unavailable", str(exc), {"provider": exc.provider, "status_code": exc.status_code})


@app.exception_handler(ServiceNotReady)
async def service_not_ready_handler(request: Request, exc: ServiceNotReady):
    return _error(503, "service_not_ready", str(exc))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Handle unexpected errors gracefully.
    """
    logger.error(f"Unexpected error for {request.url}: {exc}")
    return _error(500, "internal_server_error", "An unexpected error occurred")


# Include routers
app.include_router(routing_router)
app.include_router(safety_router)


@app.get("/", tags=["general"])
async def root():
    """
    API root endpoint with basic information.
    """
    return {
        "api": "Safe Transit Routing API",
        "version": __version__,
        "status": "operational",
        "documentation": "/docs",
        "health_check": "/api/routing/health",
        "coverage_area": "Chicago, Illinois, USA"
    }


@app.get("/health", tags=["general"])
async def api_health():
    """
    Simple health check endpoint.
    """
    service_health = routing_service.get_health_status()
    return {
        "api_status": "healthy",
        "service_status": service_health.status,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Development server configuration
if __name__ == "__main__":
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,  # Enable auto-reload for development
        log_level="info"
    )
