"""
FastAPI routes for transit routing endpoints.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from api.schemas.routing import (
    HealthResponse,
    RouteQuery,
    RouteResult,
    SnapshotResponse,
    VehiclesResponse,
)
from api.services.routing_service import TransitRoutingService, get_routing_service

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/api/routing", tags=["routing"])


@router.get("/health", response_model=HealthResponse, summary="Health Check")
def health_check(service: TransitRoutingService = Depends(get_routing_service)):
    """
    Check the health status of the routing service.

    Returns:
        HealthResponse: Snapshot version, live routes and safety surface state
    """
    return service.get_health_status()


@router.post("/calculate", response_model=RouteResult, summary="Calculate Safety-Weighted Route")
def calculate_route(request: RouteQuery, service: TransitRoutingService = Depends(get_routing_service)):
    """
    Calculate up to three ranked, materially different transit itineraries.

    Regular queries weight safety at 0.3; ``prioritizeSafety`` raises it to 0.8.
    An unreachable destination is a normal result with ``status="no_route"``.

    Example:
        ```json
        {
            "origin": {"lat": 41.8789, "lng": -87.6359},
            "destination": {"lat": 41.9474, "lng": -87.6536},
            "prioritizeSafety": true
        }
        ```
    """
    logger.info(f"Route request from ({request.origin.lat}, {request.origin.lng}) to "
                f"({request.destination.lat}, {request.destination.lng}), "
                f"prioritize_safety={request.prioritize_safety}")
    return service.calculate_route(request)


@router.get("/snapshot", response_model=SnapshotResponse, summary="Current Graph Snapshot")
def snapshot_info(service: TransitRoutingService = Depends(get_routing_service)):
    """Version, time window, edge confidence counts and per-route freshness of the live graph."""
    return service.get_snapshot_info()


@router.get("/vehicles/{route_id}", response_model=VehiclesResponse, summary="Live Vehicle Positions")
def route_vehicles(route_id: str, service: TransitRoutingService = Depends(get_routing_service)):
    """Latest vehicle positions of a route from the current snapshot."""
    try:
        return service.get_vehicles(route_id)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown route: {route_id}"
        )
