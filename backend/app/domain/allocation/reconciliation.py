"""
Reconciliation Job.

Rebuilds every reservation's cached pallet_id from its zone pair. It never
changes statuses, zone pairs or pallets; only the cache columns
(pallet_id, allocation_state) are written, and only where they differ, so a
second run over unchanged data reports zero corrections.

Each pallet is processed under the lock of its zone pair, plus the pairs of
any reservation still pointing at it from elsewhere, and committed on its own.
"""

import logging
from typing import Optional, Set

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.domain.allocation.reservation_assigner import ReservationAssigner
from backend.app.domain.allocation.zone_pair import ZonePair
from backend.app.domain.allocation.zone_pair_registry import ZonePairRegistry
from backend.app.models.pallet import Pallet
from backend.app.models.reservation import OrderReservation
from backend.app.models.reservation_enums import AllocationState, ReservationStatus
from backend.app.schemas.admin import PalletCorrection, PickupZoneDiscrepancy, ReconciliationReport
from backend.app.services.audit import AuditAction, record_transition, reservation_snapshot

logger = logging.getLogger(__name__)


class ReconciliationJob:

    def __init__(self, locks):
        self.locks = locks

    async def run(self, db: AsyncSession, pallet_id: Optional[int] = None, actor: str = "system") -> ReconciliationReport:
        report = ReconciliationReport()
        report.collisions = await ZonePairRegistry.detect_collisions(db)
        collided = {ZonePair(c.pickup_zone_id, c.delivery_zone_id) for c in report.collisions}
        for collision in report.collisions:
            logger.error("Zone pair collision %s: pallets %s", (collision.pickup_zone_id, collision.delivery_zone_id), collision.pallet_ids)

        query = select(Pallet.id).order_by(Pallet.id)
        if pallet_id is not None:
            query = query.where(Pallet.id == pallet_id)
        pallet_ids = list((await db.execute(query)).scalars().all())
        if pallet_id is not None and not pallet_ids:
            raise ResourceNotFoundError("Pallet", pallet_id)

        scanned: Set[int] = set()
        for current_id in pallet_ids:
            pallet = await db.get(Pallet, current_id)
            if pallet.zone_pair in collided:
                continue
            await self._reconcile_pallet(db, pallet, report, scanned, collided, actor)

        report.reservations_scanned = len(scanned)
        if pallet_id is None:
            result = await db.execute(
                select(OrderReservation.id)
                .where(
                    OrderReservation.allocation_state == AllocationState.AWAITING_PALLET,
                    OrderReservation.status != ReservationStatus.CANCELLED,
                )
                .order_by(OrderReservation.id)
            )
            report.awaiting_pallet = list(result.scalars().all())

        logger.info(
            "Reconciliation checked %s pallets, scanned %s reservations, corrected %s",
            report.pallets_checked, report.reservations_scanned, report.changes,
        )
        return report

    async def _reconcile_pallet(
        self,
        db: AsyncSession,
        pallet: Pallet,
        report: ReconciliationReport,
        scanned: Set[int],
        collided: Set[ZonePair],
        actor: str,
    ) -> None:
        # Reservations cached on this pallet but belonging to another pair need that pair's lock too
        result = await db.execute(
            select(OrderReservation.pickup_zone_id, OrderReservation.delivery_zone_id)
            .where(OrderReservation.pallet_id == pallet.id)
            .distinct()
        )
        pairs = {pallet.zone_pair}
        pairs.update(
            ZonePair(p, d) for p, d in result.all()
            if p is not None and d is not None and ZonePair(p, d) not in collided
        )

        async with self.locks.hold_many(pairs):
            try:
                await db.refresh(pallet)
                # Zones may have moved while waiting for the lock
                if pallet.zone_pair not in pairs:
                    await db.rollback()
                    return

                result = await db.execute(
                    select(OrderReservation)
                    .where(or_(
                        (OrderReservation.pickup_zone_id == pallet.pickup_zone_id)
                        & (OrderReservation.delivery_zone_id == pallet.delivery_zone_id),
                        OrderReservation.pallet_id == pallet.id,
                    ))
                    .order_by(OrderReservation.id)
                    .execution_options(populate_existing=True)
                )
                reservations = list(result.scalars().all())

                derived = await ZonePairRegistry.pickup_zones_by_reservation(db, [r.id for r in reservations])
                for reservation in reservations:
                    pair = ReservationAssigner.reservation_pair(reservation)
                    if pair is not None and pair not in pairs:
                        continue
                    scanned.add(reservation.id)

                    zones = derived.get(reservation.id)
                    stored = {reservation.pickup_zone_id} if reservation.pickup_zone_id is not None else set()
                    if zones is not None and zones != stored:
                        discrepancy = PickupZoneDiscrepancy(
                            reservation_id=reservation.id,
                            stored_pickup_zone_id=reservation.pickup_zone_id,
                            derived_pickup_zone_ids=sorted(zones),
                        )
                        if discrepancy not in report.pickup_zone_discrepancies:
                            report.pickup_zone_discrepancies.append(discrepancy)
                            logger.warning(
                                "Reservation %s stored pickup zone %s, items derive %s",
                                reservation.id, reservation.pickup_zone_id, sorted(zones),
                            )

                    before = reservation_snapshot(reservation)
                    old_pallet_id = reservation.pallet_id
                    new_pallet_id = await ReservationAssigner.assign(db, reservation)
                    after = reservation_snapshot(reservation)
                    if after == before:
                        continue
                    if old_pallet_id != new_pallet_id:
                        report.corrected.append(PalletCorrection(
                            reservation_id=reservation.id,
                            old_pallet_id=old_pallet_id,
                            new_pallet_id=new_pallet_id,
                        ))
                        logger.info("Reservation %s pallet %s -> %s", reservation.id, old_pallet_id, new_pallet_id)
                    await record_transition(
                        db, AuditAction.RESERVATION_PALLET_CORRECTED, "reservation", reservation.id,
                        before, after, actor=actor,
                    )

                report.pallets_checked += 1
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    @staticmethod
    async def allocate_pair(db: AsyncSession, pair: ZonePair, actor: str = "system") -> list:
        """
        Re-assign every reservation of one zone pair. Caller holds the pair
        lock and commits.
        """
        result = await db.execute(
            select(OrderReservation)
            .where(
                OrderReservation.pickup_zone_id == pair.pickup_zone_id,
                OrderReservation.delivery_zone_id == pair.delivery_zone_id,
            )
            .order_by(OrderReservation.id)
        )
        corrections = []
        for reservation in result.scalars().all():
            before = reservation_snapshot(reservation)
            old_pallet_id = reservation.pallet_id
            new_pallet_id = await ReservationAssigner.assign(db, reservation)
            after = reservation_snapshot(reservation)
            if after == before:
                continue
            if old_pallet_id != new_pallet_id:
                corrections.append(PalletCorrection(
                    reservation_id=reservation.id,
                    old_pallet_id=old_pallet_id,
                    new_pallet_id=new_pallet_id,
                ))
            await record_transition(
                db, AuditAction.RESERVATION_PALLET_CORRECTED, "reservation", reservation.id,
                before, after, actor=actor,
            )
        if corrections:
            await db.flush()
            logger.info("Zone pair %s: reassigned reservations %s", pair.lock_key, [c.reservation_id for c in corrections])
        return corrections
