"""
Pallet Lifecycle Controller.

    OPEN --rule true--> COMPLETING --all billed--> PAYMENT_PENDING --all paid--> CONFIRMED
      ^                     |                            |
      +---- admin reversal -+----------------------------+

Completion is rule-driven only: an indeterminate rule (no rules configured)
never completes a pallet, whatever its bottle count. A pallet whose rule holds
stays OPEN while any of its reservations awaits a producer decision. Every method expects the
caller to hold the pallet's zone pair lock and to commit afterwards.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    CollaboratorUnavailable, ConfirmationRequired, InvalidStateTransition
)
from backend.app.domain.allocation import completion_rules
from backend.app.domain.allocation.fill_calculator import FillCalculator, FillMetrics
from backend.app.domain.allocation.reservation_assigner import ReservationAssigner
from backend.app.domain.billing.billing_service import BillingService
from backend.app.models.billing_enums import PaymentRequestStatus
from backend.app.models.pallet import Pallet
from backend.app.models.pallet_enums import PalletStatus
from backend.app.models.reservation import OrderReservation
from backend.app.models.reservation_enums import AllocationState, BILLABLE_STATUSES, ReservationStatus
from backend.app.schemas.admin import InconsistentCompletion
from backend.app.schemas.completion_rules import RuleExplanation
from backend.app.schemas.pallet import ReverseCompletionResponse
from backend.app.services.audit import (
    AuditAction, pallet_snapshot, record_transition, reservation_snapshot
)

logger = logging.getLogger(__name__)

RESET_CONFIRMATION = "RESET"


@dataclass
class CompletionEvaluation:
    pallet: Pallet
    metrics: FillMetrics
    explanation: RuleExplanation
    # Pallet state when evaluated; later writes to the pallet do not change it
    is_complete: bool = False
    status: Optional[PalletStatus] = None
    awaiting_approval: List[int] = field(default_factory=list)

    @property
    def would_complete(self) -> Optional[bool]:
        return self.explanation.result

    @property
    def inconsistent(self) -> bool:
        """Marked complete, below capacity, and the rule no longer holds."""
        return (
            self.is_complete
            and self.status != PalletStatus.CONFIRMED
            and self.metrics.bottles < self.pallet.bottle_capacity
            and self.would_complete is not True
        )


class PalletLifecycleController:

    def __init__(
        self,
        fill_calculator: FillCalculator,
        billing: BillingService,
        payment_deadline_days: Optional[int] = None,
    ):
        self.fill_calculator = fill_calculator
        self.billing = billing
        self.payment_deadline_days = (
            payment_deadline_days if payment_deadline_days is not None else settings.payment_deadline_days
        )

    async def evaluate(self, db: AsyncSession, pallet: Pallet) -> CompletionEvaluation:
        """Current fill and what the completion rule says about it. No writes."""
        metrics = await self.fill_calculator.compute(db, pallet)
        explanation = completion_rules.explain(pallet.completion_rules, metrics.rule_metrics())
        awaiting = await ReservationAssigner.resolved_reservations(
            db, pallet, statuses=(ReservationStatus.PENDING_PRODUCER_APPROVAL,)
        )
        return CompletionEvaluation(
            pallet=pallet,
            metrics=metrics,
            explanation=explanation,
            is_complete=bool(pallet.is_complete),
            status=pallet.status,
            awaiting_approval=[r.id for r in awaiting],
        )

    async def advance(
        self, db: AsyncSession, pallet: Pallet, actor: str = "system", retry_failed: bool = True
    ) -> List[PalletStatus]:
        """
        Apply every transition the pallet is currently due.

        With retry_failed=False, reservations whose last payment failed are
        not charged again (payment callbacks leave that to the sweep).

        Returns:
            Statuses entered, in order (empty when nothing changed)
        """
        entered: List[PalletStatus] = []

        if pallet.status == PalletStatus.OPEN:
            evaluation = await self.evaluate(db, pallet)
            if evaluation.would_complete is not True:
                return entered
            if evaluation.awaiting_approval:
                logger.info(
                    "Pallet %s meets its rule but reservations %s await producer approval",
                    pallet.id, evaluation.awaiting_approval,
                )
                return entered
            await self._complete(db, pallet, evaluation, actor)
            entered.append(PalletStatus.COMPLETING)

        if pallet.status not in (PalletStatus.COMPLETING, PalletStatus.PAYMENT_PENDING):
            return entered

        await self._join_billing_round(db, pallet, actor)
        billable = await ReservationAssigner.resolved_reservations(
            db, pallet, statuses=(ReservationStatus.PENDING_PAYMENT,)
        )
        if not billable:
            return entered

        requests = await self._issue_payment_requests(db, pallet, billable, retry_failed)

        if pallet.status == PalletStatus.COMPLETING and len(requests) == len(billable):
            await self._set_status(db, pallet, PalletStatus.PAYMENT_PENDING, AuditAction.PALLET_PAYMENT_PENDING, actor)
            entered.append(PalletStatus.PAYMENT_PENDING)

        if pallet.status == PalletStatus.PAYMENT_PENDING and all(
            r.id in requests and requests[r.id].status == PaymentRequestStatus.SUCCEEDED for r in billable
        ):
            await self._confirm(db, pallet, billable, actor)
            entered.append(PalletStatus.CONFIRMED)

        return entered

    async def _complete(
        self, db: AsyncSession, pallet: Pallet, evaluation: CompletionEvaluation, actor: str
    ) -> None:
        now = datetime.utcnow()
        before = pallet_snapshot(pallet)
        pallet.status = PalletStatus.COMPLETING
        pallet.is_complete = True
        pallet.completed_at = now
        pallet.payment_deadline = now + timedelta(days=self.payment_deadline_days)
        await db.flush()

        await record_transition(
            db, AuditAction.PALLET_COMPLETED, "pallet", pallet.id, before, pallet_snapshot(pallet),
            actor=actor,
            bottles=evaluation.metrics.bottles,
            profit_sek=evaluation.metrics.profit_sek,
            matched_group=evaluation.explanation.matched_group,
            rules=evaluation.explanation.description,
        )
        logger.info(
            "Pallet %s complete: %s bottles, %.2f SEK (%s)",
            pallet.id, evaluation.metrics.bottles, evaluation.metrics.profit_sek,
            evaluation.explanation.description,
        )

    async def _join_billing_round(self, db: AsyncSession, pallet: Pallet, actor: str) -> List[int]:
        """Move placed and producer-approved reservations on a completed pallet to pending_payment."""
        placed = await ReservationAssigner.resolved_reservations(
            db, pallet, statuses=BILLABLE_STATUSES
        )
        moved = []
        for reservation in placed:
            before = reservation_snapshot(reservation)
            reservation.status = ReservationStatus.PENDING_PAYMENT
            reservation.payment_deadline = pallet.payment_deadline
            await ReservationAssigner.assign(db, reservation)
            await record_transition(
                db, AuditAction.RESERVATION_STATUS_CHANGED, "reservation", reservation.id,
                before, reservation_snapshot(reservation), actor=actor, pallet_id=pallet.id,
            )
            moved.append(reservation.id)
        if moved:
            await db.flush()
            logger.info("Pallet %s: reservations %s awaiting payment", pallet.id, moved)
        return moved

    async def _issue_payment_requests(
        self, db: AsyncSession, pallet: Pallet, billable: List[OrderReservation], retry_failed: bool
    ) -> dict:
        ids = [r.id for r in billable]
        requests = await self.billing.outstanding_by_reservation(db, ids)
        latest = {} if retry_failed else await self.billing.latest_by_reservation(db, ids)
        for reservation in billable:
            if reservation.id in requests:
                continue
            if reservation.id in latest and latest[reservation.id].status == PaymentRequestStatus.FAILED:
                continue
            try:
                requests[reservation.id] = await self.billing.request_payment(db, reservation, pallet)
            except CollaboratorUnavailable as exc:
                # Left unbilled; the next sweep asks again
                logger.warning("Pallet %s: payment request for reservation %s failed: %s", pallet.id, reservation.id, exc.message)
        return requests

    async def _set_status(
        self, db: AsyncSession, pallet: Pallet, status: PalletStatus, action: str, actor: str
    ) -> None:
        before = pallet_snapshot(pallet)
        pallet.status = status
        await db.flush()
        await record_transition(db, action, "pallet", pallet.id, before, pallet_snapshot(pallet), actor=actor)
        logger.info("Pallet %s -> %s", pallet.id, status.value)

    async def _confirm(
        self, db: AsyncSession, pallet: Pallet, billable: List[OrderReservation], actor: str
    ) -> None:
        for reservation in billable:
            before = reservation_snapshot(reservation)
            reservation.status = ReservationStatus.CONFIRMED
            reservation.pallet_id = pallet.id
            reservation.allocation_state = AllocationState.ALLOCATED
            await record_transition(
                db, AuditAction.RESERVATION_STATUS_CHANGED, "reservation", reservation.id,
                before, reservation_snapshot(reservation), actor=actor, pallet_id=pallet.id,
            )

        # Unbilled reservations must not stay pinned to a confirmed pallet
        billed_ids = {r.id for r in billable}
        result = await db.execute(
            select(OrderReservation).where(
                OrderReservation.pallet_id == pallet.id,
                OrderReservation.status != ReservationStatus.CANCELLED,
            )
        )
        released = [r for r in result.scalars().all() if r.id not in billed_ids]

        await self._set_status(db, pallet, PalletStatus.CONFIRMED, AuditAction.PALLET_CONFIRMED, actor)

        for reservation in released:
            reservation.pallet_id = None
            reservation.allocation_state = AllocationState.AWAITING_PALLET
            await ReservationAssigner.assign(db, reservation)
        if released:
            await db.flush()
            logger.info("Pallet %s confirmed; released unbilled reservations %s", pallet.id, [r.id for r in released])

    async def find_inconsistent_completions(self, db: AsyncSession) -> List[InconsistentCompletion]:
        """Pallets marked complete whose rule no longer holds below capacity."""
        result = await db.execute(
            select(Pallet)
            .where(Pallet.is_complete.is_(True), Pallet.status != PalletStatus.CONFIRMED)
            .order_by(Pallet.id)
        )
        found = []
        for pallet in result.scalars().all():
            evaluation = await self.evaluate(db, pallet)
            if evaluation.inconsistent:
                logger.warning(
                    "Pallet %s is %s but holds %s/%s bottles and its rule evaluates %s",
                    pallet.id, pallet.status.value, evaluation.metrics.bottles,
                    pallet.bottle_capacity, evaluation.would_complete,
                )
                found.append(InconsistentCompletion(
                    pallet_id=pallet.id,
                    status=pallet.status,
                    bottles=evaluation.metrics.bottles,
                    bottle_capacity=pallet.bottle_capacity,
                    would_complete=evaluation.would_complete,
                ))
        return found

    async def reverse_completion(
        self, db: AsyncSession, pallet: Pallet, confirm: str, actor: str = "admin"
    ) -> ReverseCompletionResponse:
        """
        Undo a completion.

        Raises:
            ConfirmationRequired: confirm is not "RESET"
            InvalidStateTransition: the pallet is not complete, or already CONFIRMED
        """
        if confirm != RESET_CONFIRMATION:
            raise ConfirmationRequired(RESET_CONFIRMATION)
        if pallet.status == PalletStatus.CONFIRMED:
            raise InvalidStateTransition(
                f"Pallet {pallet.id} is CONFIRMED; completion cannot be reversed",
                {"pallet_id": pallet.id, "status": pallet.status.value},
            )
        if not pallet.is_complete:
            raise InvalidStateTransition(
                f"Pallet {pallet.id} is not complete",
                {"pallet_id": pallet.id, "status": pallet.status.value},
            )

        evaluation = await self.evaluate(db, pallet)
        before = pallet_snapshot(pallet)
        pallet.is_complete = False
        pallet.status = PalletStatus.OPEN
        pallet.completed_at = None
        pallet.payment_deadline = None

        pending = await ReservationAssigner.resolved_reservations(
            db, pallet, statuses=(ReservationStatus.PENDING_PAYMENT,)
        )
        for reservation in pending:
            reservation_before = reservation_snapshot(reservation)
            reservation.status = ReservationStatus.PLACED
            reservation.payment_deadline = None
            await record_transition(
                db, AuditAction.RESERVATION_STATUS_CHANGED, "reservation", reservation.id,
                reservation_before, reservation_snapshot(reservation), actor=actor, pallet_id=pallet.id,
            )
        reverted_ids = [r.id for r in pending]
        cancelled_ids = await self.billing.cancel_pending(db, reverted_ids, actor=actor)
        await db.flush()

        await record_transition(
            db, AuditAction.PALLET_COMPLETION_REVERSED, "pallet", pallet.id, before, pallet_snapshot(pallet),
            actor=actor,
            inconsistent=evaluation.inconsistent,
            bottles=evaluation.metrics.bottles,
            reverted_reservation_ids=reverted_ids,
            cancelled_payment_request_ids=cancelled_ids,
        )
        logger.warning(
            "Pallet %s completion reversed by %s; %s reservations back to placed, %s payment requests cancelled",
            pallet.id, actor, len(reverted_ids), len(cancelled_ids),
        )
        return ReverseCompletionResponse(
            pallet_id=pallet.id,
            status=pallet.status,
            reverted_reservation_ids=reverted_ids,
            cancelled_payment_request_ids=cancelled_ids,
        )
