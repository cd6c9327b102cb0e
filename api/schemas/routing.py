"""
Pydantic schemas for the transit routing API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Coordinates(BaseModel):
    """A single location."""
    lat: float = Field(..., ge=-90, le=90, description="Latitude")
    lng: float = Field(..., ge=-180, le=180, description="Longitude")


class RouteQuery(BaseModel):
    """Request model for route calculation."""
    model_config = ConfigDict(populate_by_name=True)

    origin: Coordinates = Field(..., description="Starting location")
    destination: Coordinates = Field(..., description="Destination location")
    prioritize_safety: bool = Field(default=False, alias="prioritizeSafety",
                                    description="Weight safety over travel time")
    depart_after: Optional[datetime] = Field(default=None, alias="departAfter",
                                             description="Earliest departure (defaults to now)")


class StopInfo(BaseModel):
    """A stop referenced by a leg."""
    stop_id: str = Field(..., description="Stop or station id")
    name: str = Field(..., description="Display name")
    lat: float
    lng: float


class LegResponse(BaseModel):
    """One single-mode segment of an itinerary."""
    mode: str = Field(..., description="walk, bus, train or wait")
    description: str = Field(..., description="Human-readable instruction")
    start_stop: StopInfo
    end_stop: StopInfo
    start_time: datetime
    end_time: datetime
    duration_s: float
    route_id: Optional[str] = None
    confidence: str = Field(..., description="'live' or 'scheduled'")
    polyline: List[List[float]] = Field(default_factory=list, description="[lat, lng] vertices")


class ItineraryResponse(BaseModel):
    """A complete trip option."""
    legs: List[LegResponse]
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    total_duration_s: float = Field(..., description="Door-to-door duration from the requested departure")
    time_cost: float = Field(..., description="Normalized time term of the cost")
    safety_cost: float = Field(..., description="Safety term of the cost")
    total_cost: float = Field(..., description="Weighted cost used for ranking")
    max_risk: float = Field(..., ge=0.0, le=100.0, description="Worst segment risk score (0-100)")
    confidence: str = Field(..., description="Worst leg confidence")
    safety_confidence: str = Field(..., description="'high' or 'low'")
    geojson: Optional[Dict[str, Any]] = Field(default=None, description="Itinerary as GeoJSON FeatureCollection")


class RouteResult(BaseModel):
    """Response model for route calculation."""
    success: bool = Field(..., description="Whether the request was processed")
    status: str = Field(..., description="'ok' or 'no_route'")
    message: str = Field(..., description="Status message")
    itineraries: List[ItineraryResponse] = Field(default_factory=list)
    generated_at: datetime
    snapshot_version: Optional[int] = None
    alpha: float = Field(..., description="Safety weight applied")
    origin_stop: Optional[StopInfo] = None
    destination_stop: Optional[StopInfo] = None
    access_walk_m: Optional[float] = None
    egress_walk_m: Optional[float] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    topology_loaded: bool
    snapshot_version: Optional[int] = None
    live_routes: List[str] = Field(default_factory=list)
    crime_incidents_count: int = Field(..., description="Incidents in the safety surface")
    safety_surface_version: int


class SnapshotResponse(BaseModel):
    """Current graph snapshot summary."""
    version: int
    as_of: datetime
    horizon_end: datetime
    stop_count: int
    edge_count: int
    live_edges: int
    scheduled_edges: int
    route_status: Dict[str, str]


class VehicleResponse(BaseModel):
    vehicle_id: str
    route_id: str
    lat: float
    lng: float
    heading: Optional[float] = None
    delayed: bool
    observed_at: datetime


class VehiclesResponse(BaseModel):
    route_id: str
    route_status: str
    snapshot_version: int
    vehicles: List[VehicleResponse]


class ErrorResponse(BaseModel):
    """Error response model."""
    success: bool = Field(False, description="Always false for error responses")
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Detailed error message")
    details: Optional[Any] = Field(None, description="Additional error details")
