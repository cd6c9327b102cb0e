"""
FastAPI routes for safety scoring and crime data ingestion.
"""

import logging

from fastapi import APIRouter, Depends

from api.schemas.safety import (
    IncidentBatch,
    IncidentRefreshRequest,
    IngestResponse,
    SafetyQuery,
    SafetyResponse,
)
from api.services.routing_service import TransitRoutingService, get_routing_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/safety", tags=["safety"])


@router.post("/score", response_model=SafetyResponse, summary="Score a Path or Area")
def score(request: SafetyQuery, service: TransitRoutingService = Depends(get_routing_service)):
    """
    Risk score in [0, 100] for a polyline or bounding box.

    Areas without incident data come back with ``confidence="low"`` rather
    than a misleading zero.
    """
    return service.score_safety(request)


@router.post("/incidents", response_model=IngestResponse, summary="Ingest Incidents")
def ingest_incidents(request: IncidentBatch, service: TransitRoutingService = Depends(get_routing_service)):
    """Add a batch of incidents to the safety surface."""
    logger.info(f"Ingesting {len(request.incidents)} caller-supplied incidents")
    return service.ingest_incidents(request)


@router.post("/incidents/refresh", response_model=IngestResponse, summary="Pull Incidents From the Crime Portal")
def refresh_incidents(request: IncidentRefreshRequest,
                      service: TransitRoutingService = Depends(get_routing_service)):
    """Fetch incidents for an area and time window from the Chicago Data Portal and ingest them."""
    return service.refresh_incidents(request)
