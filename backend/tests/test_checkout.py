"""
Checkout: zone pair derivation, allocation and cancellation.
"""

import pytest
from sqlalchemy import func, select

from backend.app.core.exceptions import (
    AmbiguousZoneMatch, GeocodeError, InvalidStateTransition, InvalidZoneError,
    MixedPickupZoneError, NoZoneMatch, ReferencedZoneDeletion, ResourceNotFoundError,
)
from backend.app.models.enums import ZoneType
from backend.app.models.reservation import OrderReservation
from backend.app.models.reservation_enums import AllocationState, ReservationStatus
from backend.app.schemas.pallet import PalletCreate
from backend.app.schemas.zone import ZoneCreate
from backend.app.services.audit import AuditAction, get_audit_trail
from backend.tests.factories import (
    AMBIGUOUS_ADDRESS, GOTHENBURG_ADDRESS, STOCKHOLM, STOCKHOLM_ADDRESS, order
)


async def reservation_count(db):
    return (await db.execute(select(func.count(OrderReservation.id)))).scalar()


# TEST 1: Address matching
@pytest.mark.asyncio
async def test_checkout_by_address(allocation_engine, db_session, seed):
    reservation = await allocation_engine.place_reservation(
        db_session, order({seed.claret: 6}, delivery_address=STOCKHOLM_ADDRESS)
    )
    assert reservation.pickup_zone_id == seed.bordeaux
    assert reservation.delivery_zone_id == seed.stockholm
    assert reservation.delivery_lat == STOCKHOLM[0]
    assert reservation.total_cost_cents == 6 * 15000
    assert reservation.status == ReservationStatus.PLACED
    assert reservation.allocation_state == AllocationState.AWAITING_PALLET
    assert reservation.pallet_id is None

    items = await allocation_engine.get_items(db_session, reservation.id)
    assert [(i.wine_id, i.producer_id, i.quantity) for i in items] == [(seed.claret, seed.chateau, 6)]

    trail = await get_audit_trail(db_session, "reservation", reservation.id, AuditAction.RESERVATION_PLACED)
    assert trail[0].actor == "user:1"


@pytest.mark.asyncio
async def test_ambiguous_address_needs_manual_selection(allocation_engine, db_session, seed):
    with pytest.raises(AmbiguousZoneMatch) as exc_info:
        await allocation_engine.place_reservation(db_session, order({seed.claret: 6}, delivery_address=AMBIGUOUS_ADDRESS))
    assert {c["zone_id"] for c in exc_info.value.candidates} == {seed.stockholm, seed.uppsala}
    assert await reservation_count(db_session) == 0

    reservation = await allocation_engine.place_reservation(
        db_session, order({seed.claret: 6}, delivery_address=AMBIGUOUS_ADDRESS, delivery_zone_id=seed.uppsala)
    )
    assert reservation.delivery_zone_id == seed.uppsala


@pytest.mark.asyncio
async def test_address_outside_every_zone(allocation_engine, db_session, seed):
    with pytest.raises(NoZoneMatch):
        await allocation_engine.place_reservation(db_session, order({seed.claret: 6}, delivery_address=GOTHENBURG_ADDRESS))
    with pytest.raises(GeocodeError):
        await allocation_engine.place_reservation(db_session, order({seed.claret: 6}, delivery_address="Unknown road 9"))
    assert await reservation_count(db_session) == 0


@pytest.mark.asyncio
async def test_manual_zone_must_be_a_delivery_zone(allocation_engine, db_session, seed):
    with pytest.raises(InvalidZoneError):
        await allocation_engine.place_reservation(db_session, order({seed.claret: 6}, delivery_zone_id=seed.bordeaux))


# TEST 2: Pickup side
@pytest.mark.asyncio
async def test_mixed_pickup_zones_rejected(allocation_engine, db_session, seed):
    with pytest.raises(MixedPickupZoneError):
        await allocation_engine.place_reservation(
            db_session, order({seed.claret: 6, seed.syrah: 6}, delivery_zone_id=seed.stockholm)
        )
    assert await reservation_count(db_session) == 0


@pytest.mark.asyncio
async def test_producer_without_pickup_zone_waits(allocation_engine, db_session, seed):
    reservation = await allocation_engine.place_reservation(db_session, order({seed.blend: 3}, delivery_zone_id=seed.stockholm))
    assert reservation.pickup_zone_id is None
    assert reservation.allocation_state == AllocationState.AWAITING_PALLET


@pytest.mark.asyncio
async def test_unknown_wine(allocation_engine, db_session, seed):
    with pytest.raises(ResourceNotFoundError):
        await allocation_engine.place_reservation(db_session, order({4242: 1}, delivery_zone_id=seed.stockholm))


# TEST 3: Allocation
@pytest.mark.asyncio
async def test_checkout_allocates_to_open_pallet(allocation_engine, db_session, seed):
    pallet = await allocation_engine.register_pallet(db_session, PalletCreate(
        name="Bordeaux to Stockholm", pickup_zone_id=seed.bordeaux, delivery_zone_id=seed.stockholm, bottle_capacity=600,
    ))
    reservation = await allocation_engine.place_reservation(
        db_session, order({seed.petit: 12}, delivery_zone_id=seed.stockholm, requires_producer_approval=True)
    )
    assert reservation.pallet_id == pallet.id
    assert reservation.allocation_state == AllocationState.ALLOCATED
    assert reservation.status == ReservationStatus.PENDING_PRODUCER_APPROVAL

    elsewhere = await allocation_engine.place_reservation(db_session, order({seed.claret: 12}, delivery_zone_id=seed.uppsala))
    assert elsewhere.pallet_id is None


# TEST 4: Cancellation
@pytest.mark.asyncio
async def test_cancel_is_idempotent(allocation_engine, db_session, seed):
    reservation = await allocation_engine.place_reservation(db_session, order({seed.claret: 6}, delivery_zone_id=seed.stockholm))

    await allocation_engine.cancel_reservation(db_session, reservation.id)
    again = await allocation_engine.cancel_reservation(db_session, reservation.id)
    assert again.status == ReservationStatus.CANCELLED

    trail = await get_audit_trail(db_session, "reservation", reservation.id, AuditAction.RESERVATION_CANCELLED)
    assert len(trail) == 1


@pytest.mark.asyncio
async def test_confirmed_reservation_cannot_be_cancelled(allocation_engine, db_session, seed):
    reservation = await allocation_engine.place_reservation(db_session, order({seed.claret: 6}, delivery_zone_id=seed.stockholm))
    reservation.status = ReservationStatus.CONFIRMED
    await db_session.commit()

    with pytest.raises(InvalidStateTransition):
        await allocation_engine.cancel_reservation(db_session, reservation.id)


# TEST 5: Zones
@pytest.mark.asyncio
async def test_referenced_zone_cannot_be_deleted(allocation_engine, db_session, seed):
    with pytest.raises(ReferencedZoneDeletion) as exc_info:
        await allocation_engine.delete_zone(db_session, seed.bordeaux)
    assert "producers" in exc_info.value.details["references"]

    zone = await allocation_engine.create_zone(db_session, ZoneCreate(
        name="Malmo", zone_type=ZoneType.DELIVERY, center_lat=55.605, center_lon=13.0038, radius_km=25, country_code="se",
    ))
    assert zone.country_code == "SE"
    await allocation_engine.delete_zone(db_session, zone.id)
    assert [z.id for z in await allocation_engine.list_zones(db_session, ZoneType.DELIVERY)] == [seed.stockholm, seed.uppsala]
