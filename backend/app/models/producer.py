"""
Producer database model.

Read-only input to the allocation engine: a producer's pickup zone decides the
pickup side of a reservation's zone pair, and its MOQ gates whether its
bottles count toward a pallet's fill.
"""

from sqlalchemy import Column, Integer, String, ForeignKey
from backend.app.db.session import Base


class Producer(Base):
    """Producer model."""
    __tablename__ = "producers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), nullable=False)

    # Where the producer hands bottles over
    pickup_zone_id = Column(Integer, ForeignKey('pallet_zones.id'), nullable=True, index=True)

    # Minimum bottles on a pallet before this producer's bottles count toward fill
    moq_min_bottles = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<Producer(id={self.id}, name='{self.name}', pickup_zone_id={self.pickup_zone_id})>"
