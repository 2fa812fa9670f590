"""
Geographic zone matching.

Zones are circles on the sphere: a point is inside a zone when its
great-circle distance to the zone center is at most the zone radius.
A point may fall inside several zones; every match is returned and the
caller decides how to handle ambiguity.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import AmbiguousZoneMatch
from backend.app.models.enums import ZoneType
from backend.app.models.zone import Zone
from backend.app.services.geocoding import GeoPoint, Geocoder

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    # Rounding can push a just past 1 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def zone_contains(zone: Zone, lat: float, lon: float) -> bool:
    return haversine_km(zone.center_lat, zone.center_lon, lat, lon) <= zone.radius_km


@dataclass(frozen=True)
class ZoneMatch:
    zone: Zone
    distance_km: float

    def as_candidate(self) -> dict:
        return {
            "zone_id": self.zone.id,
            "name": self.zone.name,
            "distance_km": round(self.distance_km, 3),
            "radius_km": self.zone.radius_km,
        }


def _country_matches(zone: Zone, country_code: Optional[str]) -> bool:
    if not country_code or not zone.country_code:
        return True
    return zone.country_code.upper() == country_code.upper()


def match_zones(
    zones: Iterable[Zone],
    lat: float,
    lon: float,
    zone_type: Optional[ZoneType] = None,
    country_code: Optional[str] = None,
) -> List[ZoneMatch]:
    """All zones containing the point, nearest center first."""
    matches = []
    for zone in zones:
        if zone_type is not None and zone.zone_type != zone_type:
            continue
        if not _country_matches(zone, country_code):
            continue
        distance = haversine_km(zone.center_lat, zone.center_lon, lat, lon)
        if distance <= zone.radius_km:
            matches.append(ZoneMatch(zone=zone, distance_km=distance))
    matches.sort(key=lambda m: (m.distance_km, m.zone.id))
    return matches


def single_zone(matches: List[ZoneMatch], zone_type: ZoneType) -> Optional[Zone]:
    """The only match, None when nothing matched, AmbiguousZoneMatch otherwise."""
    if not matches:
        return None
    if len(matches) > 1:
        raise AmbiguousZoneMatch(zone_type.value, [m.as_candidate() for m in matches])
    return matches[0].zone


class GeoMatcher:
    """Matches points and addresses against the stored zones."""

    def __init__(self, geocoder: Geocoder):
        self.geocoder = geocoder

    @staticmethod
    async def candidate_zones(
        db: AsyncSession, zone_type: ZoneType, country_code: Optional[str] = None
    ) -> List[Zone]:
        query = select(Zone).where(Zone.zone_type == zone_type)
        if country_code:
            query = query.where(or_(Zone.country_code == country_code.upper(), Zone.country_code.is_(None)))
        result = await db.execute(query.order_by(Zone.id))
        return list(result.scalars().all())

    async def match_point(
        self,
        db: AsyncSession,
        lat: float,
        lon: float,
        zone_type: ZoneType,
        country_code: Optional[str] = None,
    ) -> List[ZoneMatch]:
        zones = await self.candidate_zones(db, zone_type, country_code)
        return match_zones(zones, lat, lon, zone_type=zone_type, country_code=country_code)

    async def match_address(
        self,
        db: AsyncSession,
        address: str,
        zone_type: ZoneType,
        country_code: Optional[str] = None,
    ) -> Tuple[GeoPoint, List[ZoneMatch]]:
        point = await self.geocoder.geocode(address)
        matches = await self.match_point(
            db, point.lat, point.lon, zone_type, country_code or point.country_code
        )
        return point, matches

    async def resolve_single_zone(
        self,
        db: AsyncSession,
        address: str,
        zone_type: ZoneType,
        country_code: Optional[str] = None,
    ) -> Tuple[GeoPoint, Optional[Zone]]:
        point, matches = await self.match_address(db, address, zone_type, country_code)
        return point, single_zone(matches, zone_type)
