"""
Zone pair registry: one non-terminal pallet per (pickup, delivery) pair.
"""

import pytest
from sqlalchemy import text

from backend.app.core.exceptions import (
    InvalidStateTransition, InvalidZoneError, MixedPickupZoneError, ZonePairConflict
)
from backend.app.domain.allocation.zone_pair import ZonePair
from backend.app.domain.allocation.zone_pair_registry import ZonePairRegistry
from backend.app.models.pallet import Pallet
from backend.app.models.pallet_enums import PalletStatus


def new_pallet(pickup_zone_id, delivery_zone_id, name="Pallet", status=PalletStatus.OPEN):
    return Pallet(
        name=name,
        pickup_zone_id=pickup_zone_id,
        delivery_zone_id=delivery_zone_id,
        bottle_capacity=600,
        status=status,
        is_complete=False,
    )


async def drop_active_pair_index(session):
    """Simulate legacy data written before the partial unique index existed."""
    await session.execute(text("DROP INDEX ix_pallets_active_zone_pair"))
    await session.commit()


def test_zone_pair_lock_key():
    assert ZonePair(3, 7).lock_key == "3:7"


# TEST 1: Registration
@pytest.mark.asyncio
async def test_register_and_lookup(db_session, seed):
    pallet = await ZonePairRegistry.register(db_session, new_pallet(seed.bordeaux, seed.stockholm))
    await db_session.commit()

    found = await ZonePairRegistry.lookup(db_session, ZonePair(seed.bordeaux, seed.stockholm))
    assert found.id == pallet.id
    assert await ZonePairRegistry.lookup(db_session, ZonePair(seed.bordeaux, seed.uppsala)) is None


@pytest.mark.asyncio
async def test_second_active_pallet_on_pair_rejected(db_session, seed):
    first = await ZonePairRegistry.register(db_session, new_pallet(seed.bordeaux, seed.stockholm))
    await db_session.commit()

    with pytest.raises(ZonePairConflict) as exc_info:
        await ZonePairRegistry.register(db_session, new_pallet(seed.bordeaux, seed.stockholm, name="Second"))
    assert exc_info.value.details["existing_pallet_id"] == first.id
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_confirmed_pallet_frees_its_pair(db_session, seed):
    first = await ZonePairRegistry.register(db_session, new_pallet(seed.bordeaux, seed.stockholm))
    first.status = PalletStatus.CONFIRMED
    await db_session.commit()

    second = await ZonePairRegistry.register(db_session, new_pallet(seed.bordeaux, seed.stockholm, name="Next"))
    await db_session.commit()

    found = await ZonePairRegistry.lookup(db_session, ZonePair(seed.bordeaux, seed.stockholm))
    assert found.id == second.id


@pytest.mark.asyncio
async def test_zone_roles_are_validated(db_session, seed):
    with pytest.raises(InvalidZoneError):
        await ZonePairRegistry.register(db_session, new_pallet(seed.stockholm, seed.bordeaux))
    with pytest.raises(InvalidZoneError):
        await ZonePairRegistry.register(db_session, new_pallet(seed.bordeaux, 9999))


# TEST 2: Moving pallets
@pytest.mark.asyncio
async def test_move_pallet(db_session, seed):
    pallet = await ZonePairRegistry.register(db_session, new_pallet(seed.bordeaux, seed.stockholm))
    other = await ZonePairRegistry.register(db_session, new_pallet(seed.rhone, seed.stockholm, name="Rhone"))
    await db_session.commit()

    await ZonePairRegistry.move_pallet(db_session, pallet, ZonePair(seed.bordeaux, seed.uppsala))
    await db_session.commit()
    assert pallet.zone_pair == ZonePair(seed.bordeaux, seed.uppsala)
    assert await ZonePairRegistry.lookup(db_session, ZonePair(seed.bordeaux, seed.stockholm)) is None

    with pytest.raises(ZonePairConflict):
        await ZonePairRegistry.move_pallet(db_session, pallet, other.zone_pair)


@pytest.mark.asyncio
async def test_confirmed_pallet_cannot_move(db_session, seed):
    pallet = await ZonePairRegistry.register(db_session, new_pallet(seed.bordeaux, seed.stockholm))
    pallet.status = PalletStatus.CONFIRMED
    await db_session.commit()

    with pytest.raises(InvalidStateTransition):
        await ZonePairRegistry.move_pallet(db_session, pallet, ZonePair(seed.bordeaux, seed.uppsala))


# TEST 3: Legacy collisions
@pytest.mark.asyncio
async def test_collisions_are_detected(db_session, seed):
    await drop_active_pair_index(db_session)
    db_session.add_all([
        new_pallet(seed.bordeaux, seed.stockholm, name="A"),
        new_pallet(seed.bordeaux, seed.stockholm, name="B"),
        new_pallet(seed.rhone, seed.stockholm, name="C"),
    ])
    await db_session.commit()

    collisions = await ZonePairRegistry.detect_collisions(db_session)
    assert len(collisions) == 1
    assert (collisions[0].pickup_zone_id, collisions[0].delivery_zone_id) == (seed.bordeaux, seed.stockholm)
    assert len(collisions[0].pallet_ids) == 2

    with pytest.raises(ZonePairConflict):
        await ZonePairRegistry.lookup(db_session, ZonePair(seed.bordeaux, seed.stockholm))


# TEST 4: Pickup zone derivation
@pytest.mark.asyncio
async def test_derive_pickup_zone(db_session, seed):
    assert await ZonePairRegistry.derive_pickup_zone(db_session, [seed.claret, seed.petit]) == seed.bordeaux
    assert await ZonePairRegistry.derive_pickup_zone(db_session, [seed.claret, seed.blend]) == seed.bordeaux
    assert await ZonePairRegistry.derive_pickup_zone(db_session, [seed.blend]) is None

    with pytest.raises(MixedPickupZoneError) as exc_info:
        await ZonePairRegistry.derive_pickup_zone(db_session, [seed.claret, seed.syrah])
    assert sorted(exc_info.value.pickup_zone_ids) == sorted([seed.bordeaux, seed.rhone])
