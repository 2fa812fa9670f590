"""
Payment Request database model.

Records every charge the engine asked the payment collaborator for, so that
no reservation is billed twice for the same pallet.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import PaymentRequestStatus


class PaymentRequest(Base):
    """Payment request model."""
    __tablename__ = "payment_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    reservation_id = Column(Integer, ForeignKey('order_reservations.id'), nullable=False, index=True)
    pallet_id = Column(Integer, ForeignKey('pallets.id'), nullable=False, index=True)

    amount_cents = Column(Integer, nullable=False)

    # Handle returned by the payment collaborator
    reference = Column(String(200), nullable=False, index=True)

    status = Column(Enum(PaymentRequestStatus), default=PaymentRequestStatus.REQUESTED, nullable=False, index=True)
    failure_reason = Column(String(500), nullable=True)

    requested_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<PaymentRequest(id={self.id}, reservation_id={self.reservation_id}, status='{self.status.value}')>"
