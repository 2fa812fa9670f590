"""
Zone Pair Registry.

Maps each (pickup_zone_id, delivery_zone_id) pair to at most one
non-terminal pallet. Writes are expected to run under the pair lock; the
partial unique index on pallets catches anything that slips past.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    InvalidStateTransition, InvalidZoneError, MixedPickupZoneError, ZonePairConflict
)
from backend.app.domain.allocation.zone_pair import ZonePair
from backend.app.models.enums import ZoneType
from backend.app.models.pallet import Pallet
from backend.app.models.pallet_enums import ACTIVE_PALLET_STATUSES, PalletStatus
from backend.app.models.producer import Producer
from backend.app.models.reservation import ReservationItem
from backend.app.models.wine import Wine
from backend.app.models.zone import Zone
from backend.app.schemas.admin import ZonePairCollision

logger = logging.getLogger(__name__)


class ZonePairRegistry:

    @staticmethod
    async def active_pallets(db: AsyncSession, pair: ZonePair) -> List[Pallet]:
        result = await db.execute(
            select(Pallet).where(
                Pallet.pickup_zone_id == pair.pickup_zone_id,
                Pallet.delivery_zone_id == pair.delivery_zone_id,
                Pallet.status.in_(ACTIVE_PALLET_STATUSES),
            ).order_by(Pallet.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def lookup(db: AsyncSession, pair: ZonePair) -> Optional[Pallet]:
        """
        The non-terminal pallet holding the pair, if any.

        Raises:
            ZonePairConflict: legacy data with more than one active pallet on the pair
        """
        pallets = await ZonePairRegistry.active_pallets(db, pair)
        if len(pallets) > 1:
            logger.error(
                "Zone pair %s held by %s active pallets: %s",
                pair.lock_key, len(pallets), [p.id for p in pallets],
            )
            raise ZonePairConflict(pair.pickup_zone_id, pair.delivery_zone_id, pallets[0].id)
        return pallets[0] if pallets else None

    @staticmethod
    async def validate_pair(db: AsyncSession, pair: ZonePair) -> None:
        """Pickup side must be a pickup zone and delivery side a delivery zone."""
        expected = (
            ("pickup_zone_id", pair.pickup_zone_id, ZoneType.PICKUP),
            ("delivery_zone_id", pair.delivery_zone_id, ZoneType.DELIVERY),
        )
        for field, zone_id, zone_type in expected:
            zone = await db.get(Zone, zone_id)
            if zone is None:
                raise InvalidZoneError(f"Zone {zone_id} does not exist", {field: zone_id})
            if zone.zone_type != zone_type:
                raise InvalidZoneError(
                    f"Zone {zone_id} is a {zone.zone_type.value} zone, expected {zone_type.value}",
                    {field: zone_id, "zone_type": zone.zone_type.value},
                )

    @staticmethod
    async def register(db: AsyncSession, pallet: Pallet) -> Pallet:
        """
        Add a new pallet to the registry. Caller holds the pair lock.

        Raises:
            InvalidZoneError: zones missing or of the wrong type
            ZonePairConflict: another non-terminal pallet already holds the pair
        """
        pair = ZonePair(pallet.pickup_zone_id, pallet.delivery_zone_id)
        await ZonePairRegistry.validate_pair(db, pair)

        existing = await ZonePairRegistry.lookup(db, pair)
        if existing is not None:
            raise ZonePairConflict(pair.pickup_zone_id, pair.delivery_zone_id, existing.id)

        db.add(pallet)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise ZonePairConflict(pair.pickup_zone_id, pair.delivery_zone_id) from exc

        logger.info("Registered pallet %s on zone pair %s", pallet.id, pair.lock_key)
        return pallet

    @staticmethod
    async def move_pallet(db: AsyncSession, pallet: Pallet, new_pair: ZonePair) -> Pallet:
        """
        Re-pair a pallet. Caller holds both the old and the new pair lock.

        Raises:
            InvalidStateTransition: the pallet is terminal
            InvalidZoneError: zones missing or of the wrong type
            ZonePairConflict: another non-terminal pallet holds new_pair
        """
        if pallet.status == PalletStatus.CONFIRMED:
            raise InvalidStateTransition(
                f"Pallet {pallet.id} is CONFIRMED and cannot change zones",
                {"pallet_id": pallet.id, "status": pallet.status.value},
            )
        if pallet.zone_pair == new_pair:
            return pallet

        await ZonePairRegistry.validate_pair(db, new_pair)
        existing = await ZonePairRegistry.lookup(db, new_pair)
        if existing is not None and existing.id != pallet.id:
            raise ZonePairConflict(new_pair.pickup_zone_id, new_pair.delivery_zone_id, existing.id)

        old_pair = pallet.zone_pair
        pallet.pickup_zone_id = new_pair.pickup_zone_id
        pallet.delivery_zone_id = new_pair.delivery_zone_id
        try:
            await db.flush()
        except IntegrityError as exc:
            raise ZonePairConflict(new_pair.pickup_zone_id, new_pair.delivery_zone_id) from exc

        logger.info("Moved pallet %s from zone pair %s to %s", pallet.id, old_pair.lock_key, new_pair.lock_key)
        return pallet

    @staticmethod
    async def detect_collisions(db: AsyncSession) -> List[ZonePairCollision]:
        """Pairs held by more than one non-terminal pallet."""
        result = await db.execute(
            select(Pallet.pickup_zone_id, Pallet.delivery_zone_id, Pallet.id)
            .where(Pallet.status.in_(ACTIVE_PALLET_STATUSES))
            .order_by(Pallet.pickup_zone_id, Pallet.delivery_zone_id, Pallet.id)
        )
        by_pair: Dict[ZonePair, List[int]] = defaultdict(list)
        for pickup_zone_id, delivery_zone_id, pallet_id in result.all():
            by_pair[ZonePair(pickup_zone_id, delivery_zone_id)].append(pallet_id)

        return [
            ZonePairCollision(
                pickup_zone_id=pair.pickup_zone_id,
                delivery_zone_id=pair.delivery_zone_id,
                pallet_ids=pallet_ids,
            )
            for pair, pallet_ids in by_pair.items()
            if len(pallet_ids) > 1
        ]

    @staticmethod
    async def derive_pickup_zone(db: AsyncSession, wine_ids: Iterable[int]) -> Optional[int]:
        """
        The single pickup zone of the wines' producers.

        Producers without a pickup zone are ignored; None when none has one.

        Raises:
            MixedPickupZoneError: producers sit in more than one pickup zone
        """
        ids = list(set(wine_ids))
        if not ids:
            return None
        result = await db.execute(
            select(Producer.pickup_zone_id)
            .join(Wine, Wine.producer_id == Producer.id)
            .where(Wine.id.in_(ids), Producer.pickup_zone_id.is_not(None))
            .distinct()
        )
        zone_ids = sorted(result.scalars().all())
        if len(zone_ids) > 1:
            raise MixedPickupZoneError(zone_ids)
        return zone_ids[0] if zone_ids else None

    @staticmethod
    async def pickup_zones_by_reservation(
        db: AsyncSession, reservation_ids: Iterable[int]
    ) -> Dict[int, Set[int]]:
        """Pickup zones currently derived from each reservation's items."""
        ids = list(set(reservation_ids))
        zones: Dict[int, Set[int]] = {}
        if not ids:
            return zones
        result = await db.execute(
            select(ReservationItem.reservation_id, Producer.pickup_zone_id)
            .join(Producer, Producer.id == ReservationItem.producer_id)
            .where(ReservationItem.reservation_id.in_(ids))
        )
        for reservation_id, pickup_zone_id in result.all():
            bucket = zones.setdefault(reservation_id, set())
            if pickup_zone_id is not None:
                bucket.add(pickup_zone_id)
        return zones
