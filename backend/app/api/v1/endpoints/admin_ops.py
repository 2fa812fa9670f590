"""
Admin Operations API Endpoints.

Reconciliation, completion sweeps and integrity reports.
"""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_engine
from backend.app.db.session import get_db
from backend.app.domain.allocation.engine import AllocationEngine
from backend.app.schemas.admin import (
    CompletionSweepResult, InconsistentCompletion, ReconcileRequest,
    ReconciliationReport, ZonePairCollision,
)
from backend.app.services.cache import CacheService

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.post("/reconcile", response_model=ReconciliationReport)
async def reconcile(
    request: Optional[ReconcileRequest] = Body(None),
    actor: str = Header("admin", alias="X-Actor"),
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """
    Recompute cached pallet ids from zone pairs.

    Restrict to one pallet with {"pallet_id": N}. Safe to repeat; a second
    run reports no corrections.
    """
    pallet_id = request.pallet_id if request else None
    return await engine.reconcile(db, pallet_id=pallet_id, actor=actor)


@router.post("/check-completion", response_model=CompletionSweepResult)
async def check_completion(
    actor: str = Header("admin", alias="X-Actor"),
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """Run the completion sweep now."""
    return await engine.check_completion(db, actor=actor)


@router.get("/inconsistencies", response_model=List[InconsistentCompletion])
async def list_inconsistencies(
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """Pallets marked complete whose completion rule no longer holds."""
    return await engine.find_inconsistent_completions(db)


@router.get("/collisions", response_model=List[ZonePairCollision])
async def list_collisions(
    db: AsyncSession = Depends(get_db),
):
    """Zone pairs held by more than one non-terminal pallet."""
    return await AllocationEngine.detect_collisions(db)


@router.post("/clear-cache")
async def clear_system_cache():
    """Clear the geocoding cache."""
    removed = await CacheService.clear()
    return {"message": "Cache cleared successfully", "entries_removed": removed}
