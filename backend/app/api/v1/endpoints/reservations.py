"""
Reservation API Endpoints.

Checkout and reservation lookup for customers, and the producer decision on
reservations that need approval.
"""

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_engine
from backend.app.db.session import get_db
from backend.app.domain.allocation.engine import AllocationEngine
from backend.app.models.reservation import OrderReservation
from backend.app.schemas.reservation import (
    ProducerDecision, ReservationCreate, ReservationItemResponse, ReservationResponse
)

router = APIRouter(prefix="/reservations", tags=["Reservations"])


async def _to_response(db: AsyncSession, reservation: OrderReservation) -> ReservationResponse:
    response = ReservationResponse.model_validate(reservation)
    items = await AllocationEngine.get_items(db, reservation.id)
    response.items = [ReservationItemResponse.model_validate(item) for item in items]
    return response


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    data: ReservationCreate,
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """
    Checkout.

    The delivery zone comes from `delivery_zone_id` when given, otherwise from
    geocoding `delivery_address`. An address inside several delivery zones is
    rejected with the candidate list (409) so the customer can choose one.
    """
    reservation = await engine.place_reservation(db, data)
    return await _to_response(db, reservation)


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a reservation with its items."""
    reservation = await AllocationEngine.get_reservation(db, reservation_id)
    return await _to_response(db, reservation)


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: int,
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """Cancel a reservation. Outstanding payment requests are cancelled with it."""
    reservation = await engine.cancel_reservation(db, reservation_id)
    return await _to_response(db, reservation)


@router.post("/{reservation_id}/producer-decision", response_model=ReservationResponse)
async def decide_producer_approval(
    reservation_id: int,
    decision: ProducerDecision,
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
    actor: str = Header("producer", alias="X-Actor"),
):
    """
    Approve or decline a reservation awaiting producer approval.

    A pallet whose completion rule already holds completes once none of its
    reservations await a decision.
    """
    reservation = await engine.decide_producer_approval(
        db, reservation_id, decision.approved, reason=decision.reason, actor=actor
    )
    return await _to_response(db, reservation)
