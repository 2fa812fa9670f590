"""
Scheduled jobs.
"""

import pytest

from backend.app import main
from backend.app.core.config import settings
from backend.app.jobs import pallet_jobs, scheduler
from backend.app.models.pallet_enums import PalletStatus
from backend.app.schemas.pallet import PalletCreate
from backend.app.services.audit import AuditAction, get_audit_trail
from backend.tests.factories import order


@pytest.mark.asyncio
async def test_completion_sweep_job(allocation_engine, session_factory, db_session, seed):
    pallet = await allocation_engine.register_pallet(db_session, PalletCreate(
        name="Bordeaux to Stockholm", pickup_zone_id=seed.bordeaux, delivery_zone_id=seed.stockholm, bottle_capacity=600,
    ))
    await allocation_engine.place_reservation(db_session, order({seed.claret: 30}, delivery_zone_id=seed.stockholm))

    # Rules written straight to the table take effect on the next sweep
    pallet.completion_rules = {"groups": [{"conditions": [{"metric": "bottles", "op": ">=", "value": 30}]}]}
    await db_session.commit()

    result = await pallet_jobs.run_completion_sweep(session_factory=session_factory, engine=allocation_engine)
    assert result.completed == [pallet.id]
    assert result.payment_pending == [pallet.id]

    await db_session.refresh(pallet)
    assert pallet.status == PalletStatus.PAYMENT_PENDING
    trail = await get_audit_trail(db_session, "pallet", pallet.id)
    assert {entry.actor for entry in trail if entry.action != AuditAction.PALLET_REGISTERED} == {pallet_jobs.JOB_ACTOR}


@pytest.mark.asyncio
async def test_reconciliation_job(allocation_engine, session_factory, seed):
    report = await pallet_jobs.run_reconciliation(session_factory=session_factory, engine=allocation_engine)
    assert report.pallets_checked == 0
    assert report.changes == 0


@pytest.mark.asyncio
async def test_failing_job_is_logged_not_raised(mocker, caplog):
    mocker.patch.object(pallet_jobs, "run_completion_sweep", side_effect=RuntimeError("database down"))
    await scheduler.run_job("completion_sweep")
    assert "Job 'completion_sweep' failed" in caplog.text


@pytest.mark.asyncio
async def test_scheduler_registers_jobs():
    scheduler.start_scheduler()
    try:
        assert {job["id"] for job in scheduler.get_job_status()} == {"completion_sweep", "reconciliation"}
    finally:
        scheduler.shutdown_scheduler()


@pytest.mark.asyncio
async def test_health_lists_scheduled_jobs(client, mocker):
    mocker.patch.object(settings, "scheduler_enabled", True)
    jobs = [{"id": "completion_sweep", "name": "Pallet completion sweep", "next_run_time": None, "trigger": "interval[0:05:00]"}]
    mocker.patch.object(main, "get_job_status", return_value=jobs)

    response = await client.get("/health")
    assert response.json()["jobs"] == jobs
