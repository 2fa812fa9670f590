"""
Reservation Pydantic schemas.

Defines request and response models for checkout and reservation lookup.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import datetime
from typing import Optional, List
from backend.app.models.reservation_enums import ReservationStatus, AllocationState


class ReservationItemCreate(BaseModel):
    """A wine and a bottle count."""
    wine_id: int
    quantity: int = Field(..., gt=0)


class ReservationCreate(BaseModel):
    """
    Schema for checkout.

    Either `delivery_address` (geocoded and matched) or `delivery_zone_id`
    (manual selection after an ambiguous or failed match) must be given.
    """
    user_id: int
    items: List[ReservationItemCreate] = Field(..., min_length=1)
    delivery_address: Optional[str] = Field(None, min_length=1, max_length=500)
    country_code: Optional[str] = Field(None, min_length=2, max_length=2)
    delivery_zone_id: Optional[int] = None
    requires_producer_approval: bool = False

    @model_validator(mode="after")
    def check_delivery(self):
        if not self.delivery_address and self.delivery_zone_id is None:
            raise ValueError("delivery_address or delivery_zone_id is required")
        return self


class ReservationItemResponse(BaseModel):
    """Schema for a reservation line."""
    model_config = ConfigDict(from_attributes=True)

    wine_id: int
    producer_id: int
    quantity: int
    price_cents: int


class ReservationResponse(BaseModel):
    """Schema for reservation response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    pallet_id: Optional[int]
    pickup_zone_id: Optional[int]
    delivery_zone_id: Optional[int]
    allocation_state: AllocationState
    status: ReservationStatus
    total_cost_cents: int
    payment_deadline: Optional[datetime]
    created_at: datetime
    items: List[ReservationItemResponse] = []


class ProducerDecision(BaseModel):
    """A producer's answer to a reservation awaiting approval."""
    approved: bool
    reason: Optional[str] = Field(None, max_length=500)
