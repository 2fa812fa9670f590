"""
Payment Schemas.
"""

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional
from backend.app.models.billing_enums import PaymentRequestStatus


class PaymentCallback(BaseModel):
    """Success/failure notification from the payment collaborator."""
    reference: str
    succeeded: bool
    failure_reason: Optional[str] = None


class PaymentRequestResponse(BaseModel):
    """Schema for displaying a payment request."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    reservation_id: int
    pallet_id: int
    amount_cents: int
    reference: str
    status: PaymentRequestStatus
    requested_at: datetime
    settled_at: Optional[datetime]
