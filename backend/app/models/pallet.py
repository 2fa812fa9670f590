"""
Pallet database model.

A pallet is a bounded-capacity shipment between one pickup zone and one
delivery zone.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Enum, JSON, Index, text
)
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.pallet_enums import PalletStatus


class Pallet(Base):
    """
    Pallet model.

    At most one non-terminal pallet may hold a (pickup_zone_id, delivery_zone_id)
    pair. The registry checks this under the pair lock; the partial unique
    index below is the database-level backstop.
    """
    __tablename__ = "pallets"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), nullable=False)

    # Zone pair
    pickup_zone_id = Column(Integer, ForeignKey('pallet_zones.id'), nullable=False, index=True)
    delivery_zone_id = Column(Integer, ForeignKey('pallet_zones.id'), nullable=False, index=True)

    # Capacity is informational (fill percentage); completion is rule-driven
    bottle_capacity = Column(Integer, nullable=False)
    cost_cents = Column(Integer, nullable=False, default=0)

    # Lifecycle
    status = Column(Enum(PalletStatus), default=PalletStatus.OPEN, nullable=False, index=True)
    is_complete = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    payment_deadline = Column(DateTime(timezone=True), nullable=True)

    # RuleSet JSON (see schemas.completion_rules)
    completion_rules = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index(
            'ix_pallets_active_zone_pair', 'pickup_zone_id', 'delivery_zone_id', unique=True,
            postgresql_where=text("status <> 'CONFIRMED'"),
            sqlite_where=text("status <> 'CONFIRMED'"),
        ),
    )

    @property
    def zone_pair(self):
        from backend.app.domain.allocation.zone_pair import ZonePair
        return ZonePair(self.pickup_zone_id, self.delivery_zone_id)

    def __repr__(self):
        return f"<Pallet(id={self.id}, name='{self.name}', status='{self.status.value}', complete={self.is_complete})>"
