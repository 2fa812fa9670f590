"""
Payment Callback Endpoint.

The payment collaborator reports the outcome of each charge here.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_engine
from backend.app.db.session import get_db
from backend.app.domain.allocation.engine import AllocationEngine
from backend.app.schemas.payment import PaymentCallback, PaymentRequestResponse

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/callback", response_model=PaymentRequestResponse)
async def payment_callback(
    callback: PaymentCallback,
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """
    Record a payment success or failure.

    Repeated callbacks for an already settled request are accepted and ignored.
    """
    request = await engine.record_payment_result(db, callback)
    return PaymentRequestResponse.model_validate(request)
