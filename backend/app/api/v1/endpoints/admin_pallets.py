"""
Admin Pallet API Endpoints.

Pallet registration, zone changes, completion rules, completion evaluation
and the confirmed reversal of an erroneous completion.
"""

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_engine
from backend.app.db.session import get_db
from backend.app.domain.allocation.engine import AllocationEngine
from backend.app.domain.allocation.lifecycle import CompletionEvaluation
from backend.app.schemas.completion_rules import RuleSet
from backend.app.schemas.pallet import (
    CompletionEvaluationResponse, FillMetricsResponse, PalletCreate, PalletResponse,
    PalletZonesUpdate, ReverseCompletionRequest, ReverseCompletionResponse,
)

router = APIRouter(prefix="/admin/pallets", tags=["Admin - Pallets"])


def _evaluation_response(evaluation: CompletionEvaluation) -> CompletionEvaluationResponse:
    pallet = evaluation.pallet
    metrics = evaluation.metrics
    return CompletionEvaluationResponse(
        pallet_id=pallet.id,
        status=pallet.status,
        is_complete=pallet.is_complete,
        metrics=FillMetricsResponse(
            bottles=metrics.bottles,
            profit_sek=metrics.profit_sek,
            per_producer=metrics.per_producer,
            gated_producers=metrics.gated_producers,
            reservation_ids=metrics.reservation_ids,
            bottle_capacity=pallet.bottle_capacity,
            fill_percentage=metrics.fill_percentage(pallet.bottle_capacity),
        ),
        would_complete=evaluation.would_complete,
        rules_description=evaluation.explanation.description,
        inconsistent=evaluation.inconsistent,
        awaiting_approval_reservation_ids=evaluation.awaiting_approval,
    )


@router.post("", response_model=PalletResponse, status_code=status.HTTP_201_CREATED)
async def register_pallet(
    data: PalletCreate,
    actor: str = Header("admin", alias="X-Actor"),
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """
    Register a pallet on a zone pair.

    409 if another non-terminal pallet already holds the pair. Reservations
    already waiting on the pair are allocated immediately.
    """
    pallet = await engine.register_pallet(db, data, actor=actor)
    return PalletResponse.model_validate(pallet)


@router.get("/{pallet_id}", response_model=PalletResponse)
async def get_pallet(
    pallet_id: int,
    db: AsyncSession = Depends(get_db),
):
    pallet = await AllocationEngine.get_pallet(db, pallet_id)
    return PalletResponse.model_validate(pallet)


@router.patch("/{pallet_id}/zones", response_model=PalletResponse)
async def move_pallet(
    pallet_id: int,
    data: PalletZonesUpdate,
    actor: str = Header("admin", alias="X-Actor"),
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """Move a pallet to another zone pair; both pairs are re-allocated."""
    pallet = await engine.move_pallet(db, pallet_id, data, actor=actor)
    return PalletResponse.model_validate(pallet)


@router.put("/{pallet_id}/completion-rules", response_model=PalletResponse)
async def update_completion_rules(
    pallet_id: int,
    rules: RuleSet,
    actor: str = Header("admin", alias="X-Actor"),
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """Replace the pallet's completion rules and re-evaluate it."""
    pallet = await engine.update_completion_rules(db, pallet_id, rules, actor=actor)
    return PalletResponse.model_validate(pallet)


@router.get("/{pallet_id}/completion", response_model=CompletionEvaluationResponse)
async def evaluate_completion(
    pallet_id: int,
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """Current fill metrics and whether the completion rule holds. Read only."""
    evaluation = await engine.evaluate_completion(db, pallet_id)
    return _evaluation_response(evaluation)


@router.post("/{pallet_id}/reverse-completion", response_model=ReverseCompletionResponse)
async def reverse_completion(
    pallet_id: int,
    request: ReverseCompletionRequest,
    actor: str = Header("admin", alias="X-Actor"),
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """
    Undo a completion. Requires {"confirm": "RESET"}.

    The pallet returns to OPEN, its pending_payment reservations to placed,
    and their outstanding payment requests are cancelled.
    """
    return await engine.reverse_completion(db, pallet_id, request.confirm, actor=actor)
