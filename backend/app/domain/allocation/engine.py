"""
Allocation Engine.

Entry points used by the API and the scheduled jobs. Every write that touches
a pallet or its reservations runs under the zone pair lock and commits once,
so checkout, registry changes, payment callbacks and reversals on the same
pallet never interleave. Geocoding and other remote lookups happen before the
lock is taken.
"""

import logging
from contextlib import asynccontextmanager, nullcontext
from typing import AsyncIterator, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    AppException, InvalidStateTransition, InvalidZoneError, NoZoneMatch,
    ReferencedZoneDeletion, ResourceNotFoundError,
)
from backend.app.domain.allocation.fill_calculator import FillCalculator
from backend.app.domain.allocation.geo_matcher import GeoMatcher, ZoneMatch, single_zone
from backend.app.domain.allocation.lifecycle import CompletionEvaluation, PalletLifecycleController
from backend.app.domain.allocation.reconciliation import ReconciliationJob
from backend.app.domain.allocation.reservation_assigner import ReservationAssigner
from backend.app.domain.allocation.zone_pair import ZonePair
from backend.app.domain.allocation.zone_pair_registry import ZonePairRegistry
from backend.app.domain.billing.billing_service import BillingService, PaymentCollaborator
from backend.app.domain.billing.pricing_resolver import MarginProvider
from backend.app.models.enums import ZoneType
from backend.app.models.pallet import Pallet
from backend.app.models.pallet_enums import ACTIVE_PALLET_STATUSES, PalletStatus
from backend.app.models.payment_request import PaymentRequest
from backend.app.models.producer import Producer
from backend.app.models.reservation import OrderReservation, ReservationItem
from backend.app.models.reservation_enums import ReservationStatus
from backend.app.models.wine import Wine
from backend.app.models.zone import Zone
from backend.app.schemas.admin import CompletionSweepResult, ReconciliationReport
from backend.app.schemas.completion_rules import RuleSet
from backend.app.schemas.pallet import PalletCreate, PalletZonesUpdate, ReverseCompletionResponse
from backend.app.schemas.payment import PaymentCallback
from backend.app.schemas.reservation import ReservationCreate
from backend.app.schemas.zone import ZoneCreate
from backend.app.services.audit import (
    AuditAction, log_event, pallet_snapshot, record_transition, reservation_snapshot
)
from backend.app.services.geocoding import GeoPoint, Geocoder

logger = logging.getLogger(__name__)


class AllocationEngine:

    def __init__(
        self,
        geocoder: Geocoder,
        margin_provider: MarginProvider,
        payment_collaborator: PaymentCollaborator,
        locks,
    ):
        self.locks = locks
        self.geo_matcher = GeoMatcher(geocoder)
        self.fill_calculator = FillCalculator(margin_provider)
        self.billing = BillingService(payment_collaborator)
        self.lifecycle = PalletLifecycleController(self.fill_calculator, self.billing)
        self.reconciliation = ReconciliationJob(locks)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def get_pallet(db: AsyncSession, pallet_id: int) -> Pallet:
        pallet = await db.get(Pallet, pallet_id)
        if pallet is None:
            raise ResourceNotFoundError("Pallet", pallet_id)
        return pallet

    @staticmethod
    async def get_reservation(db: AsyncSession, reservation_id: int) -> OrderReservation:
        reservation = await db.get(OrderReservation, reservation_id)
        if reservation is None:
            raise ResourceNotFoundError("Reservation", reservation_id)
        return reservation

    @staticmethod
    async def get_items(db: AsyncSession, reservation_id: int) -> List[ReservationItem]:
        result = await db.execute(
            select(ReservationItem).where(ReservationItem.reservation_id == reservation_id).order_by(ReservationItem.id)
        )
        return list(result.scalars().all())

    @asynccontextmanager
    async def _transaction(self, db: AsyncSession) -> AsyncIterator[None]:
        try:
            yield
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    @asynccontextmanager
    async def _locked_pallet(self, db: AsyncSession, pallet_id: int) -> AsyncIterator[Pallet]:
        """Hold the pallet's pair lock, retrying if the pallet moved while waiting."""
        pallet = await self.get_pallet(db, pallet_id)
        while True:
            pair = pallet.zone_pair
            async with self.locks.hold(pair):
                await db.refresh(pallet)
                if pallet.zone_pair != pair:
                    continue
                async with self._transaction(db):
                    yield pallet
                return

    # ------------------------------------------------------------------
    # Zones
    # ------------------------------------------------------------------

    async def match_address(
        self, db: AsyncSession, address: str, zone_type: ZoneType, country_code: Optional[str] = None
    ) -> Tuple[GeoPoint, List[ZoneMatch]]:
        return await self.geo_matcher.match_address(db, address, zone_type, country_code)

    async def create_zone(self, db: AsyncSession, data: ZoneCreate, actor: str = "admin") -> Zone:
        zone = Zone(
            name=data.name,
            zone_type=data.zone_type,
            center_lat=data.center_lat,
            center_lon=data.center_lon,
            radius_km=data.radius_km,
            country_code=data.country_code.upper() if data.country_code else None,
        )
        async with self._transaction(db):
            db.add(zone)
            await db.flush()
            await log_event(
                db, AuditAction.ZONE_CREATED, "zone", zone.id,
                metadata={"name": zone.name, "zone_type": zone.zone_type.value, "radius_km": zone.radius_km},
                actor=actor,
            )
        await db.refresh(zone)
        return zone

    @staticmethod
    async def list_zones(db: AsyncSession, zone_type: Optional[ZoneType] = None) -> List[Zone]:
        query = select(Zone).order_by(Zone.id)
        if zone_type is not None:
            query = query.where(Zone.zone_type == zone_type)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def delete_zone(self, db: AsyncSession, zone_id: int, actor: str = "admin") -> None:
        """
        Raises:
            ReferencedZoneDeletion: producers, reservations or pallets still use the zone
        """
        zone = await db.get(Zone, zone_id)
        if zone is None:
            raise ResourceNotFoundError("Zone", zone_id)

        references = {}
        checks = (
            ("producers", select(Producer.id).where(Producer.pickup_zone_id == zone_id)),
            ("reservations", select(OrderReservation.id).where(or_(
                OrderReservation.pickup_zone_id == zone_id, OrderReservation.delivery_zone_id == zone_id
            ))),
            ("pallets", select(Pallet.id).where(or_(
                Pallet.pickup_zone_id == zone_id, Pallet.delivery_zone_id == zone_id
            ))),
        )
        for name, query in checks:
            ids = list((await db.execute(query.limit(20))).scalars().all())
            if ids:
                references[name] = ids
        if references:
            raise ReferencedZoneDeletion(zone_id, references)

        async with self._transaction(db):
            await log_event(db, AuditAction.ZONE_DELETED, "zone", zone_id, metadata={"name": zone.name}, actor=actor)
            await db.delete(zone)

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def _delivery_zone(self, db: AsyncSession, data: ReservationCreate) -> Tuple[Zone, Optional[GeoPoint]]:
        if data.delivery_zone_id is not None:
            zone = await db.get(Zone, data.delivery_zone_id)
            if zone is None or zone.zone_type != ZoneType.DELIVERY:
                raise InvalidZoneError(
                    f"Zone {data.delivery_zone_id} is not a delivery zone",
                    {"delivery_zone_id": data.delivery_zone_id},
                )
            return zone, None

        point, matches = await self.geo_matcher.match_address(
            db, data.delivery_address, ZoneType.DELIVERY, data.country_code
        )
        zone = single_zone(matches, ZoneType.DELIVERY)
        if zone is None:
            raise NoZoneMatch(ZoneType.DELIVERY.value, data.delivery_address)
        return zone, point

    async def place_reservation(self, db: AsyncSession, data: ReservationCreate) -> OrderReservation:
        """
        Checkout: derive the zone pair, then under the pair lock write the
        reservation, assign it and run the pallet's transitions.
        """
        wine_ids = [item.wine_id for item in data.items]
        result = await db.execute(select(Wine).where(Wine.id.in_(wine_ids)))
        wines = {wine.id: wine for wine in result.scalars().all()}
        for wine_id in wine_ids:
            if wine_id not in wines:
                raise ResourceNotFoundError("Wine", wine_id)

        pickup_zone_id = await ZonePairRegistry.derive_pickup_zone(db, wine_ids)
        delivery_zone, point = await self._delivery_zone(db, data)

        pair = ZonePair(pickup_zone_id, delivery_zone.id) if pickup_zone_id is not None else None
        status = (
            ReservationStatus.PENDING_PRODUCER_APPROVAL if data.requires_producer_approval
            else ReservationStatus.PLACED
        )

        async with (self.locks.hold(pair) if pair is not None else nullcontext()):
            async with self._transaction(db):
                reservation = OrderReservation(
                    user_id=data.user_id,
                    pickup_zone_id=pickup_zone_id,
                    delivery_zone_id=delivery_zone.id,
                    status=status,
                    total_cost_cents=sum(wines[i.wine_id].base_price_cents * i.quantity for i in data.items),
                    delivery_address=data.delivery_address,
                    delivery_lat=point.lat if point else None,
                    delivery_lon=point.lon if point else None,
                )
                db.add(reservation)
                await db.flush()

                for item in data.items:
                    wine = wines[item.wine_id]
                    db.add(ReservationItem(
                        reservation_id=reservation.id,
                        wine_id=wine.id,
                        producer_id=wine.producer_id,
                        quantity=item.quantity,
                        price_cents=wine.base_price_cents,
                    ))
                await db.flush()

                pallet_id = await ReservationAssigner.assign(db, reservation)
                await log_event(
                    db, AuditAction.RESERVATION_PLACED, "reservation", reservation.id,
                    metadata={
                        "zone_pair": list(pair) if pair else None,
                        "pallet_id": pallet_id,
                        "bottles": sum(i.quantity for i in data.items),
                    },
                    actor=f"user:{data.user_id}",
                )
                if pallet_id is not None:
                    pallet = await db.get(Pallet, pallet_id)
                    await self.lifecycle.advance(db, pallet)

        await db.refresh(reservation)
        logger.info(
            "Reservation %s placed on zone pair %s (pallet %s, %s)",
            reservation.id, pair.lock_key if pair else None, reservation.pallet_id, reservation.allocation_state.value,
        )
        return reservation

    async def cancel_reservation(
        self, db: AsyncSession, reservation_id: int, actor: str = "customer"
    ) -> OrderReservation:
        reservation = await self.get_reservation(db, reservation_id)
        pair = ReservationAssigner.reservation_pair(reservation)

        async with (self.locks.hold(pair) if pair is not None else nullcontext()):
            async with self._transaction(db):
                await db.refresh(reservation)
                if reservation.status == ReservationStatus.CANCELLED:
                    return reservation
                if reservation.status == ReservationStatus.CONFIRMED:
                    raise InvalidStateTransition(
                        f"Reservation {reservation.id} is confirmed and cannot be cancelled",
                        {"reservation_id": reservation.id, "status": reservation.status.value},
                    )

                before = reservation_snapshot(reservation)
                reservation.status = ReservationStatus.CANCELLED
                reservation.payment_deadline = None
                cancelled = await self.billing.cancel_pending(db, [reservation.id], actor=actor)
                await record_transition(
                    db, AuditAction.RESERVATION_CANCELLED, "reservation", reservation.id,
                    before, reservation_snapshot(reservation), actor=actor,
                    cancelled_payment_request_ids=cancelled,
                )

                pallet = await ReservationAssigner.resolve(db, reservation)
                if pallet is not None:
                    await self.lifecycle.advance(db, pallet)

        logger.info("Reservation %s cancelled by %s", reservation.id, actor)
        return reservation

    async def decide_producer_approval(
        self,
        db: AsyncSession,
        reservation_id: int,
        approved: bool,
        reason: Optional[str] = None,
        actor: str = "producer",
    ) -> OrderReservation:
        """
        Record the producer's decision on a reservation awaiting approval.

        Approved reservations become billable; declined ones are cancelled and
        their bottles leave the pallet. Either way the pallet's transitions
        run again, since a held completion may now go through.

        Raises:
            InvalidStateTransition: the reservation is not awaiting approval
        """
        reservation = await self.get_reservation(db, reservation_id)
        pair = ReservationAssigner.reservation_pair(reservation)

        async with (self.locks.hold(pair) if pair is not None else nullcontext()):
            async with self._transaction(db):
                await db.refresh(reservation)
                if reservation.status != ReservationStatus.PENDING_PRODUCER_APPROVAL:
                    raise InvalidStateTransition(
                        f"Reservation {reservation.id} is not awaiting producer approval",
                        {"reservation_id": reservation.id, "status": reservation.status.value},
                    )

                before = reservation_snapshot(reservation)
                reservation.status = ReservationStatus.APPROVED if approved else ReservationStatus.CANCELLED
                await db.flush()
                await record_transition(
                    db,
                    AuditAction.RESERVATION_PRODUCER_APPROVED if approved else AuditAction.RESERVATION_PRODUCER_DECLINED,
                    "reservation", reservation.id, before, reservation_snapshot(reservation),
                    actor=actor, reason=reason,
                )

                pallet = await ReservationAssigner.resolve(db, reservation)
                if pallet is not None:
                    await self.lifecycle.advance(db, pallet)

        await db.refresh(reservation)
        logger.info(
            "Reservation %s %s by %s", reservation.id, "approved" if approved else "declined", actor,
        )
        return reservation

    # ------------------------------------------------------------------
    # Pallets
    # ------------------------------------------------------------------

    async def register_pallet(self, db: AsyncSession, data: PalletCreate, actor: str = "admin") -> Pallet:
        """Register a pallet and allocate the reservations already waiting on its pair."""
        pallet = Pallet(
            name=data.name,
            pickup_zone_id=data.pickup_zone_id,
            delivery_zone_id=data.delivery_zone_id,
            bottle_capacity=data.bottle_capacity,
            cost_cents=data.cost_cents,
            status=PalletStatus.OPEN,
            is_complete=False,
            completion_rules=data.completion_rules.model_dump(mode="json") if data.completion_rules else None,
        )
        pair = ZonePair(data.pickup_zone_id, data.delivery_zone_id)

        async with self.locks.hold(pair):
            async with self._transaction(db):
                await ZonePairRegistry.register(db, pallet)
                await log_event(
                    db, AuditAction.PALLET_REGISTERED, "pallet", pallet.id,
                    metadata={"after": pallet_snapshot(pallet), "bottle_capacity": pallet.bottle_capacity},
                    actor=actor,
                )
                await self.reconciliation.allocate_pair(db, pair, actor=actor)
                await self.lifecycle.advance(db, pallet)

        await db.refresh(pallet)
        return pallet

    async def move_pallet(
        self, db: AsyncSession, pallet_id: int, data: PalletZonesUpdate, actor: str = "admin"
    ) -> Pallet:
        pallet = await self.get_pallet(db, pallet_id)
        new_pair = ZonePair(data.pickup_zone_id, data.delivery_zone_id)

        while True:
            old_pair = pallet.zone_pair
            async with self.locks.hold_many([old_pair, new_pair]):
                await db.refresh(pallet)
                if pallet.zone_pair != old_pair:
                    continue
                async with self._transaction(db):
                    before = pallet_snapshot(pallet)
                    await ZonePairRegistry.move_pallet(db, pallet, new_pair)
                    if old_pair != new_pair:
                        await record_transition(
                            db, AuditAction.PALLET_ZONES_CHANGED, "pallet", pallet.id,
                            before, pallet_snapshot(pallet), actor=actor,
                        )
                        await self.reconciliation.allocate_pair(db, old_pair, actor=actor)
                        await self.reconciliation.allocate_pair(db, new_pair, actor=actor)
                        await self.lifecycle.advance(db, pallet)
                break

        await db.refresh(pallet)
        return pallet

    async def update_completion_rules(
        self, db: AsyncSession, pallet_id: int, rules: Optional[RuleSet], actor: str = "admin"
    ) -> Pallet:
        async with self._locked_pallet(db, pallet_id) as pallet:
            if pallet.status == PalletStatus.CONFIRMED:
                raise InvalidStateTransition(
                    f"Pallet {pallet.id} is CONFIRMED; rules can no longer change",
                    {"pallet_id": pallet.id},
                )
            previous = pallet.completion_rules
            pallet.completion_rules = rules.model_dump(mode="json") if rules else None
            await db.flush()
            await record_transition(
                db, AuditAction.PALLET_RULES_UPDATED, "pallet", pallet.id,
                {"completion_rules": previous}, {"completion_rules": pallet.completion_rules}, actor=actor,
            )
            await self.lifecycle.advance(db, pallet)
        await db.refresh(pallet)
        return pallet

    async def evaluate_completion(self, db: AsyncSession, pallet_id: int) -> CompletionEvaluation:
        pallet = await self.get_pallet(db, pallet_id)
        return await self.lifecycle.evaluate(db, pallet)

    async def reverse_completion(
        self, db: AsyncSession, pallet_id: int, confirm: str, actor: str = "admin"
    ) -> ReverseCompletionResponse:
        async with self._locked_pallet(db, pallet_id) as pallet:
            response = await self.lifecycle.reverse_completion(db, pallet, confirm, actor=actor)
        return response

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def record_payment_result(self, db: AsyncSession, callback: PaymentCallback) -> PaymentRequest:
        request = await self.billing.get_by_reference(db, callback.reference)
        reservation = await self.get_reservation(db, request.reservation_id)
        pair = ReservationAssigner.reservation_pair(reservation)

        async with (self.locks.hold(pair) if pair is not None else nullcontext()):
            async with self._transaction(db):
                await db.refresh(request)
                await db.refresh(reservation)
                changed = await self.billing.record_result(
                    db, request, callback.succeeded, callback.failure_reason
                )
                if changed:
                    pallet = await ReservationAssigner.resolve(db, reservation)
                    if pallet is not None:
                        await self.lifecycle.advance(db, pallet, retry_failed=False)

        await db.refresh(request)
        return request

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def reconcile(self, db: AsyncSession, pallet_id: Optional[int] = None, actor: str = "system") -> ReconciliationReport:
        return await self.reconciliation.run(db, pallet_id=pallet_id, actor=actor)

    async def check_completion(self, db: AsyncSession, actor: str = "system") -> CompletionSweepResult:
        """Advance every non-terminal pallet and report inconsistent completions."""
        sweep = CompletionSweepResult()
        result = await db.execute(
            select(Pallet.id).where(Pallet.status.in_(ACTIVE_PALLET_STATUSES)).order_by(Pallet.id)
        )
        for pallet_id in list(result.scalars().all()):
            try:
                async with self._locked_pallet(db, pallet_id) as pallet:
                    entered = await self.lifecycle.advance(db, pallet, actor=actor)
            except AppException as exc:
                logger.error("Completion sweep failed for pallet %s: %s", pallet_id, exc.message)
                sweep.errors.append(f"pallet {pallet_id}: {exc.message}")
                continue

            sweep.pallets_checked += 1
            if PalletStatus.COMPLETING in entered:
                sweep.completed.append(pallet_id)
            if PalletStatus.PAYMENT_PENDING in entered:
                sweep.payment_pending.append(pallet_id)
            if PalletStatus.CONFIRMED in entered:
                sweep.confirmed.append(pallet_id)

        sweep.inconsistent = await self.lifecycle.find_inconsistent_completions(db)
        logger.info(
            "Completion sweep: %s pallets, %s completed, %s confirmed, %s inconsistent",
            sweep.pallets_checked, len(sweep.completed), len(sweep.confirmed), len(sweep.inconsistent),
        )
        return sweep

    async def find_inconsistent_completions(self, db: AsyncSession):
        return await self.lifecycle.find_inconsistent_completions(db)

    @staticmethod
    async def detect_collisions(db: AsyncSession):
        return await ZonePairRegistry.detect_collisions(db)

