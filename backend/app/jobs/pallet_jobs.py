"""
Scheduled pallet jobs.

- completion sweep: advance every non-terminal pallet (complete, bill,
  confirm), re-request failed payments and report inconsistent completions
- reconciliation backstop: rebuild cached pallet ids from zone pairs
"""

import logging

from backend.app.core.dependencies import build_engine
from backend.app.db.session import AsyncSessionLocal
from backend.app.schemas.admin import CompletionSweepResult, ReconciliationReport

logger = logging.getLogger(__name__)

JOB_ACTOR = "scheduler"


async def run_completion_sweep(session_factory=AsyncSessionLocal, engine=None) -> CompletionSweepResult:
    engine = engine or build_engine()
    async with session_factory() as db:
        result = await engine.check_completion(db, actor=JOB_ACTOR)
    for item in result.inconsistent:
        logger.warning(
            "Pallet %s marked complete with %s/%s bottles; rule evaluates %s. Needs admin review.",
            item.pallet_id, item.bottles, item.bottle_capacity, item.would_complete,
        )
    return result


async def run_reconciliation(session_factory=AsyncSessionLocal, engine=None) -> ReconciliationReport:
    engine = engine or build_engine()
    async with session_factory() as db:
        report = await engine.reconcile(db, actor=JOB_ACTOR)
    if report.changes:
        logger.warning("Reconciliation backstop corrected %s stale pallet ids", report.changes)
    return report
