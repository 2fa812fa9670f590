"""
Wine database model.

Only the fields the allocation engine reads: the producer (pickup zone and
MOQ) and the base price used to total a reservation.
"""

from sqlalchemy import Column, Integer, String, ForeignKey
from backend.app.db.session import Base


class Wine(Base):
    """Wine model."""
    __tablename__ = "wines"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    producer_id = Column(Integer, ForeignKey('producers.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    base_price_cents = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<Wine(id={self.id}, name='{self.name}', producer_id={self.producer_id})>"
