"""
Pydantic schemas for the safety scoring API.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from api.schemas.routing import Coordinates


class BoundingBox(BaseModel):
    """Axis-aligned latitude/longitude box."""
    lat_min: float = Field(..., ge=-90, le=90)
    lat_max: float = Field(..., ge=-90, le=90)
    lon_min: float = Field(..., ge=-180, le=180)
    lon_max: float = Field(..., ge=-180, le=180)

    def as_bounds(self) -> Dict[str, float]:
        return self.model_dump()


class SafetyQuery(BaseModel):
    """Score either a polyline or a bounding box."""
    model_config = ConfigDict(populate_by_name=True)

    polyline: Optional[List[Coordinates]] = Field(default=None, description="Path vertices")
    bounding_box: Optional[BoundingBox] = Field(default=None, alias="boundingBox")

    @model_validator(mode='after')
    def _exactly_one(self) -> 'SafetyQuery':
        if (self.polyline is None) == (self.bounding_box is None):
            raise ValueError('Provide exactly one of polyline or boundingBox')
        if self.polyline is not None and not self.polyline:
            raise ValueError('polyline must contain at least one point')
        return self


class SafetyResponse(BaseModel):
    score: float = Field(..., ge=0.0, le=100.0, description="Risk score (0 = no recorded risk)")
    confidence: str = Field(..., description="'high' or 'low'")
    sample_count: int
    segment_scores: List[float] = Field(default_factory=list, description="Per polyline segment")
    surface_version: int


class IncidentIn(BaseModel):
    """A caller-supplied crime incident."""
    id: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    category: str = Field(..., min_length=1, description="Chicago primary_type, e.g. ROBBERY")
    timestamp: datetime


class IncidentBatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    incidents: List[IncidentIn]
    bounding_box: Optional[BoundingBox] = Field(default=None, alias="boundingBox",
                                                description="Area the batch covers, even where empty")


class IncidentRefreshRequest(BaseModel):
    """Pull incidents for an area from the crime portal."""
    model_config = ConfigDict(populate_by_name=True)

    bounding_box: BoundingBox = Field(..., alias="boundingBox")
    days: int = Field(default=180, ge=1, le=3650, description="Look-back window in days")


class IngestResponse(BaseModel):
    ingested: int = Field(..., description="New incidents added")
    surface_version: int
    cell_count: int
