"""
Pallet Pydantic schemas.

Defines request and response models for pallet registration and lifecycle.
"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, List, Dict
from backend.app.models.pallet_enums import PalletStatus
from backend.app.schemas.completion_rules import RuleSet


class PalletCreate(BaseModel):
    """Schema for registering a new pallet on a zone pair."""
    name: str = Field(..., min_length=1, max_length=200)
    pickup_zone_id: int
    delivery_zone_id: int
    bottle_capacity: int = Field(..., gt=0)
    cost_cents: int = Field(0, ge=0)
    completion_rules: Optional[RuleSet] = None


class PalletZonesUpdate(BaseModel):
    """Schema for moving a pallet to another zone pair."""
    pickup_zone_id: int
    delivery_zone_id: int


class PalletResponse(BaseModel):
    """Schema for pallet response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    pickup_zone_id: int
    delivery_zone_id: int
    bottle_capacity: int
    cost_cents: int
    status: PalletStatus
    is_complete: bool
    completed_at: Optional[datetime]
    payment_deadline: Optional[datetime]
    completion_rules: Optional[RuleSet]
    created_at: datetime


class FillMetricsResponse(BaseModel):
    """Fill metrics of a pallet."""
    bottles: int
    profit_sek: float
    per_producer: Dict[int, int]
    gated_producers: List[int]
    reservation_ids: List[int]
    bottle_capacity: int
    fill_percentage: float


class CompletionEvaluationResponse(BaseModel):
    """Result of evaluating a pallet's completion rules against its current fill."""
    pallet_id: int
    status: PalletStatus
    is_complete: bool
    metrics: FillMetricsResponse
    would_complete: Optional[bool]
    rules_description: str
    inconsistent: bool
    awaiting_approval_reservation_ids: List[int] = []


class ReverseCompletionRequest(BaseModel):
    """Admin confirmation for undoing a completion."""
    confirm: str


class ReverseCompletionResponse(BaseModel):
    """Result of a completion reversal."""
    pallet_id: int
    status: PalletStatus
    reverted_reservation_ids: List[int]
    cancelled_payment_request_ids: List[int]
