"""
Order reservation database models.

A reservation's primary relationship is its zone pair; pallet_id is a cache
that can be recomputed from (pickup_zone_id, delivery_zone_id) at any time.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.reservation_enums import ReservationStatus, AllocationState


class OrderReservation(Base):
    """
    Order reservation model.

    Created at checkout; status advanced by the pallet lifecycle controller.
    """
    __tablename__ = "order_reservations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)

    # Zone pair (source of truth)
    pickup_zone_id = Column(Integer, ForeignKey('pallet_zones.id'), nullable=True, index=True)
    delivery_zone_id = Column(Integer, ForeignKey('pallet_zones.id'), nullable=True, index=True)

    # Cached pallet resolved from the zone pair
    pallet_id = Column(Integer, ForeignKey('pallets.id'), nullable=True, index=True)
    allocation_state = Column(
        Enum(AllocationState), default=AllocationState.AWAITING_PALLET, nullable=False, index=True
    )

    status = Column(Enum(ReservationStatus), default=ReservationStatus.PLACED, nullable=False, index=True)
    total_cost_cents = Column(Integer, nullable=False, default=0)

    # Delivery address as geocoded at checkout
    delivery_address = Column(String(500), nullable=True)
    delivery_lat = Column(Float, nullable=True)
    delivery_lon = Column(Float, nullable=True)

    payment_deadline = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return (
            f"<OrderReservation(id={self.id}, pallet_id={self.pallet_id}, "
            f"status='{self.status.value}', allocation='{self.allocation_state.value}')>"
        )


class ReservationItem(Base):
    """Reservation line item. Immutable once the reservation is placed."""
    __tablename__ = "order_reservation_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    reservation_id = Column(Integer, ForeignKey('order_reservations.id'), nullable=False, index=True)
    wine_id = Column(Integer, ForeignKey('wines.id'), nullable=False, index=True)

    # Derived from the wine at checkout
    producer_id = Column(Integer, ForeignKey('producers.id'), nullable=False, index=True)

    quantity = Column(Integer, nullable=False)
    price_cents = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<ReservationItem(reservation_id={self.reservation_id}, wine_id={self.wine_id}, qty={self.quantity})>"
