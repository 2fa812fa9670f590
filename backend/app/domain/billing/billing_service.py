"""
Billing Service (Domain Logic).

Issues payment requests for reservations on completed pallets and records
their outcome. Capture itself belongs to the payment collaborator; this
service only keeps the engine's record of what was asked for.

Idempotent: a reservation with a REQUESTED or SUCCEEDED request is never
charged again. Callers own the transaction (flush here, commit upstream).
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import CollaboratorUnavailable, ResourceNotFoundError
from backend.app.models.billing_enums import OUTSTANDING_PAYMENT_STATUSES, PaymentRequestStatus
from backend.app.models.pallet import Pallet
from backend.app.models.payment_request import PaymentRequest
from backend.app.models.reservation import OrderReservation
from backend.app.services.audit import AuditAction, log_event, record_transition, snapshot

logger = logging.getLogger(__name__)

PAYMENT_SNAPSHOT_FIELDS = ("status", "failure_reason", "settled_at")


@dataclass(frozen=True)
class PaymentHandle:
    reference: str


class PaymentCollaborator(Protocol):
    async def request_charge(self, reservation_id: int, amount_cents: int) -> PaymentHandle:
        ...


class ManualPaymentCollaborator:
    """
    No payment provider configured: requests are recorded for manual
    invoicing and settled through the payment callback endpoint.
    """

    async def request_charge(self, reservation_id: int, amount_cents: int) -> PaymentHandle:
        reference = f"manual-{uuid.uuid4().hex}"
        logger.info("Manual payment request %s for reservation %s (%s cents)", reference, reservation_id, amount_cents)
        return PaymentHandle(reference=reference)


class HttpPaymentCollaborator:
    """
    POST {base_url}/charges {"reservation_id", "amount_cents", "currency"} -> {"reference"}
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def request_charge(self, reservation_id: int, amount_cents: int) -> PaymentHandle:
        payload = {"reservation_id": reservation_id, "amount_cents": amount_cents, "currency": "SEK"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/charges", json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise CollaboratorUnavailable("payment", f"reservation {reservation_id}: {exc}") from exc
        return PaymentHandle(reference=str(response.json()["reference"]))


def resolve_payment_collaborator() -> PaymentCollaborator:
    if settings.payment_service_url:
        return HttpPaymentCollaborator(
            settings.payment_service_url,
            timeout_seconds=settings.payment_service_timeout_seconds,
        )
    return ManualPaymentCollaborator()


class BillingService:

    def __init__(self, collaborator: PaymentCollaborator):
        self.collaborator = collaborator

    @staticmethod
    async def outstanding_by_reservation(
        db: AsyncSession, reservation_ids: Iterable[int]
    ) -> Dict[int, PaymentRequest]:
        """Latest REQUESTED or SUCCEEDED request per reservation."""
        ids = list(set(reservation_ids))
        if not ids:
            return {}
        result = await db.execute(
            select(PaymentRequest)
            .where(
                PaymentRequest.reservation_id.in_(ids),
                PaymentRequest.status.in_(OUTSTANDING_PAYMENT_STATUSES),
            )
            .order_by(PaymentRequest.id)
        )
        return {request.reservation_id: request for request in result.scalars().all()}

    @staticmethod
    async def latest_by_reservation(
        db: AsyncSession, reservation_ids: Iterable[int]
    ) -> Dict[int, PaymentRequest]:
        """Most recent request per reservation, whatever its status."""
        ids = list(set(reservation_ids))
        if not ids:
            return {}
        result = await db.execute(
            select(PaymentRequest)
            .where(PaymentRequest.reservation_id.in_(ids))
            .order_by(PaymentRequest.id)
        )
        return {request.reservation_id: request for request in result.scalars().all()}

    async def request_payment(
        self, db: AsyncSession, reservation: OrderReservation, pallet: Pallet
    ) -> PaymentRequest:
        """
        Ask the collaborator to charge the reservation, unless a request is
        already outstanding.

        Raises:
            CollaboratorUnavailable: the payment service failed; nothing is recorded
        """
        existing = await self.outstanding_by_reservation(db, [reservation.id])
        if reservation.id in existing:
            return existing[reservation.id]

        handle = await self.collaborator.request_charge(reservation.id, reservation.total_cost_cents)

        request = PaymentRequest(
            reservation_id=reservation.id,
            pallet_id=pallet.id,
            amount_cents=reservation.total_cost_cents,
            reference=handle.reference,
            status=PaymentRequestStatus.REQUESTED,
        )
        db.add(request)
        await db.flush()

        await log_event(
            db,
            AuditAction.PAYMENT_REQUESTED,
            "payment_request",
            request.id,
            metadata={
                "reservation_id": reservation.id,
                "pallet_id": pallet.id,
                "amount_cents": request.amount_cents,
                "reference": request.reference,
            },
        )
        return request

    @staticmethod
    async def get_by_reference(db: AsyncSession, reference: str) -> PaymentRequest:
        result = await db.execute(
            select(PaymentRequest).where(PaymentRequest.reference == reference).order_by(PaymentRequest.id.desc())
        )
        request = result.scalars().first()
        if request is None:
            raise ResourceNotFoundError("PaymentRequest", reference)
        return request

    @staticmethod
    async def record_result(
        db: AsyncSession,
        request: PaymentRequest,
        succeeded: bool,
        failure_reason: Optional[str] = None,
    ) -> bool:
        """
        Settle a REQUESTED payment. Repeated or late callbacks are ignored.

        Returns:
            True if the request changed state
        """
        if request.status != PaymentRequestStatus.REQUESTED:
            logger.info(
                "Ignoring payment callback for %s: request %s already %s",
                request.reference, request.id, request.status.value,
            )
            return False

        before = snapshot(request, PAYMENT_SNAPSHOT_FIELDS)
        request.status = PaymentRequestStatus.SUCCEEDED if succeeded else PaymentRequestStatus.FAILED
        request.failure_reason = None if succeeded else (failure_reason or "unknown")
        request.settled_at = datetime.utcnow()
        await db.flush()

        await record_transition(
            db,
            AuditAction.PAYMENT_SUCCEEDED if succeeded else AuditAction.PAYMENT_FAILED,
            "payment_request",
            request.id,
            before,
            snapshot(request, PAYMENT_SNAPSHOT_FIELDS),
            reservation_id=request.reservation_id,
            pallet_id=request.pallet_id,
        )
        if not succeeded:
            logger.warning("Payment %s for reservation %s failed: %s", request.reference, request.reservation_id, request.failure_reason)
        return True

    @staticmethod
    async def cancel_pending(
        db: AsyncSession, reservation_ids: Iterable[int], actor: str = "system"
    ) -> List[int]:
        """
        Cancel REQUESTED payments of the given reservations.

        SUCCEEDED requests are kept: the money is already captured and the
        request still counts as outstanding if the reservation is billed again.
        """
        ids = list(set(reservation_ids))
        if not ids:
            return []
        result = await db.execute(
            select(PaymentRequest)
            .where(
                PaymentRequest.reservation_id.in_(ids),
                PaymentRequest.status == PaymentRequestStatus.REQUESTED,
            )
            .order_by(PaymentRequest.id)
        )
        cancelled = []
        for request in result.scalars().all():
            before = snapshot(request, PAYMENT_SNAPSHOT_FIELDS)
            request.status = PaymentRequestStatus.CANCELLED
            request.settled_at = datetime.utcnow()
            await record_transition(
                db,
                AuditAction.PAYMENT_CANCELLED,
                "payment_request",
                request.id,
                before,
                snapshot(request, PAYMENT_SNAPSHOT_FIELDS),
                actor=actor,
                reservation_id=request.reservation_id,
            )
            cancelled.append(request.id)
        await db.flush()
        return cancelled
