"""
Pallet fill metrics: bottles, profit and producer MOQ gating.
"""

import pytest

from backend.app.schemas.pallet import PalletCreate
from backend.tests.factories import order


async def open_pallet(engine, db, seed, **kwargs):
    data = PalletCreate(
        name="Bordeaux to Stockholm",
        pickup_zone_id=seed.bordeaux,
        delivery_zone_id=seed.stockholm,
        bottle_capacity=600,
        **kwargs,
    )
    return await engine.register_pallet(db, data)


@pytest.mark.asyncio
async def test_fill_counts_bottles_and_profit(allocation_engine, db_session, seed, margin_provider):
    pallet = await open_pallet(allocation_engine, db_session, seed)
    margin_provider.per_wine[seed.claret] = 25.0

    await allocation_engine.place_reservation(db_session, order({seed.claret: 40}, delivery_zone_id=seed.stockholm))
    await allocation_engine.place_reservation(
        db_session, order({seed.claret: 10, seed.blend: 5}, delivery_zone_id=seed.stockholm, user_id=2)
    )

    metrics = await allocation_engine.fill_calculator.compute(db_session, pallet)
    assert metrics.bottles == 55
    assert metrics.profit_sek == 50 * 25.0 + 5 * 10.0
    assert metrics.per_producer == {seed.chateau: 50, seed.nomad: 5}
    assert metrics.gated_producers == []
    assert metrics.fill_percentage(pallet.bottle_capacity) == round(55 / 600 * 100, 2)


@pytest.mark.asyncio
async def test_producer_below_moq_does_not_count(allocation_engine, db_session, seed):
    pallet = await open_pallet(allocation_engine, db_session, seed)

    await allocation_engine.place_reservation(
        db_session, order({seed.claret: 10, seed.petit: 20}, delivery_zone_id=seed.stockholm)
    )
    metrics = await allocation_engine.fill_calculator.compute(db_session, pallet)
    assert metrics.bottles == 10
    assert metrics.per_producer[seed.domaine] == 20
    assert metrics.gated_producers == [seed.domaine]
    assert metrics.profit_sek == 100.0

    # A second order lifts Domaine Petit over its 30 bottle minimum
    await allocation_engine.place_reservation(
        db_session, order({seed.petit: 15}, delivery_zone_id=seed.stockholm, user_id=2)
    )
    metrics = await allocation_engine.fill_calculator.compute(db_session, pallet)
    assert metrics.bottles == 45
    assert metrics.gated_producers == []


@pytest.mark.asyncio
async def test_cancelled_reservations_do_not_count(allocation_engine, db_session, seed):
    pallet = await open_pallet(allocation_engine, db_session, seed)

    kept = await allocation_engine.place_reservation(db_session, order({seed.claret: 12}, delivery_zone_id=seed.stockholm))
    dropped = await allocation_engine.place_reservation(
        db_session, order({seed.claret: 30}, delivery_zone_id=seed.stockholm, user_id=2)
    )
    await allocation_engine.cancel_reservation(db_session, dropped.id)

    metrics = await allocation_engine.fill_calculator.compute(db_session, pallet)
    assert metrics.bottles == 12
    assert metrics.reservation_ids == [kept.id]


@pytest.mark.asyncio
async def test_other_zone_pairs_do_not_count(allocation_engine, db_session, seed):
    pallet = await open_pallet(allocation_engine, db_session, seed)

    await allocation_engine.place_reservation(db_session, order({seed.claret: 7}, delivery_zone_id=seed.uppsala))
    await allocation_engine.place_reservation(db_session, order({seed.syrah: 9}, delivery_zone_id=seed.stockholm))

    metrics = await allocation_engine.fill_calculator.compute(db_session, pallet)
    assert metrics.bottles == 0
    assert metrics.reservation_ids == []
