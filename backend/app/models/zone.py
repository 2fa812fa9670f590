"""
Zone database model.

Zones are circular areas (center + radius) used to group producers into
pickup areas and customers into delivery areas.
"""

from sqlalchemy import Column, Integer, String, DateTime, Float, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import ZoneType


class Zone(Base):
    """
    Zone model.

    A zone is immutable once a live pallet or reservation references it;
    deletion is blocked while references exist.
    """
    __tablename__ = "pallet_zones"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    name = Column(String(200), nullable=False)
    zone_type = Column(Enum(ZoneType), nullable=False, index=True)

    # Geometry
    center_lat = Column(Float, nullable=False)
    center_lon = Column(Float, nullable=False)
    radius_km = Column(Float, nullable=False)

    # Optional ISO country filter (NULL matches every country)
    country_code = Column(String(2), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Zone(id={self.id}, name='{self.name}', type='{self.zone_type.value}', radius_km={self.radius_km})>"
