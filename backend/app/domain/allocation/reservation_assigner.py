"""
Reservation Assigner.

A reservation belongs to whatever pallet its zone pair resolves to; the
pallet_id column only caches that answer. Assignment rewrites the cache when
it disagrees with the resolution and leaves the row untouched otherwise, so
running it any number of times converges on the same state.
"""

from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.domain.allocation.zone_pair import ZonePair
from backend.app.domain.allocation.zone_pair_registry import ZonePairRegistry
from backend.app.models.pallet import Pallet
from backend.app.models.pallet_enums import PalletStatus
from backend.app.models.reservation import OrderReservation
from backend.app.models.reservation_enums import AllocationState


class ReservationAssigner:

    @staticmethod
    def reservation_pair(reservation: OrderReservation) -> Optional[ZonePair]:
        if reservation.pickup_zone_id is None or reservation.delivery_zone_id is None:
            return None
        return ZonePair(reservation.pickup_zone_id, reservation.delivery_zone_id)

    @staticmethod
    async def resolve(db: AsyncSession, reservation: OrderReservation) -> Optional[Pallet]:
        """
        The pallet a reservation belongs to.

        A reservation already on a CONFIRMED pallet stays with it; a new pallet
        opened later on the same pair does not take it over. Everything else
        resolves through the registry by zone pair.
        """
        if reservation.pallet_id is not None:
            cached = await db.get(Pallet, reservation.pallet_id)
            if cached is not None and cached.status == PalletStatus.CONFIRMED:
                return cached

        pair = ReservationAssigner.reservation_pair(reservation)
        if pair is None:
            return None
        return await ZonePairRegistry.lookup(db, pair)

    @staticmethod
    async def assign(db: AsyncSession, reservation: OrderReservation) -> Optional[int]:
        """Write the resolved pallet into the cache. Returns the pallet id or None."""
        pallet = await ReservationAssigner.resolve(db, reservation)
        pallet_id = pallet.id if pallet is not None else None
        state = AllocationState.ALLOCATED if pallet is not None else AllocationState.AWAITING_PALLET

        if reservation.pallet_id != pallet_id:
            reservation.pallet_id = pallet_id
        if reservation.allocation_state != state:
            reservation.allocation_state = state
        return pallet_id

    @staticmethod
    def resolution_criteria(pallet: Pallet) -> List:
        """
        SQL criteria selecting the reservations that resolve to `pallet`,
        independent of what their cached pallet_id says.
        """
        if pallet.status == PalletStatus.CONFIRMED:
            return [OrderReservation.pallet_id == pallet.id]

        pinned_elsewhere = select(Pallet.id).where(
            Pallet.status == PalletStatus.CONFIRMED, Pallet.id != pallet.id
        )
        return [
            OrderReservation.pickup_zone_id == pallet.pickup_zone_id,
            OrderReservation.delivery_zone_id == pallet.delivery_zone_id,
            or_(
                OrderReservation.pallet_id.is_(None),
                OrderReservation.pallet_id.not_in(pinned_elsewhere),
            ),
        ]

    @staticmethod
    async def resolved_reservations(
        db: AsyncSession, pallet: Pallet, statuses=None
    ) -> List[OrderReservation]:
        query = select(OrderReservation).where(*ReservationAssigner.resolution_criteria(pallet))
        if statuses is not None:
            query = query.where(OrderReservation.status.in_(statuses))
        result = await db.execute(query.order_by(OrderReservation.id))
        return list(result.scalars().all())
