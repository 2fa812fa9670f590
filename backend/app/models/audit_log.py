"""
Audit Log Database Model.

Tracks pallet and reservation state transitions with before/after snapshots
so that completions and reversals can be audited.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - PALLET_REGISTERED / PALLET_ZONES_CHANGED
    - PALLET_COMPLETED / PALLET_PAYMENT_PENDING / PALLET_CONFIRMED
    - PALLET_COMPLETION_REVERSED
    - RESERVATION_PLACED / RESERVATION_CANCELLED / RESERVATION_PALLET_CORRECTED
    - PAYMENT_REQUESTED / PAYMENT_SUCCEEDED / PAYMENT_FAILED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action ("system" for scheduled and automatic transitions)
    actor = Column(String(100), nullable=False, default="system")

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What it was performed on
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(Integer, nullable=True, index=True)

    # Before/after snapshots and additional context
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
