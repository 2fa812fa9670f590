"""
Zone Pydantic schemas.

Defines request and response models for zone management and address matching.
"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, List
from backend.app.models.enums import ZoneType


class ZoneCreate(BaseModel):
    """Schema for creating a new zone."""
    name: str = Field(..., min_length=1, max_length=200, description="Zone name")
    zone_type: ZoneType
    center_lat: float = Field(..., ge=-90, le=90, description="Center latitude")
    center_lon: float = Field(..., ge=-180, le=180, description="Center longitude")
    radius_km: float = Field(..., gt=0, description="Radius in kilometers")
    country_code: Optional[str] = Field(None, min_length=2, max_length=2, description="ISO country code")


class ZoneResponse(BaseModel):
    """Schema for zone response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    zone_type: ZoneType
    center_lat: float
    center_lon: float
    radius_km: float
    country_code: Optional[str]
    created_at: datetime


class ZoneListResponse(BaseModel):
    """Schema for zone list."""
    zones: List[ZoneResponse]
    total: int


class ZoneMatchRequest(BaseModel):
    """Schema for matching an address against zones."""
    address: str = Field(..., min_length=1, max_length=500)
    zone_type: ZoneType = ZoneType.DELIVERY
    country_code: Optional[str] = Field(None, min_length=2, max_length=2)


class ZoneMatchCandidate(BaseModel):
    """A zone containing the geocoded point."""
    zone_id: int
    name: str
    distance_km: float
    radius_km: float


class ZoneMatchResponse(BaseModel):
    """Schema for address match result. More than one match is ambiguous."""
    latitude: float
    longitude: float
    matches: List[ZoneMatchCandidate]
    ambiguous: bool
