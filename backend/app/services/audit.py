"""
Audit logging service for pallet and reservation state changes.

Entries are added to the caller's session and flushed, never committed here:
an audit row lands in the same transaction as the change it describes.
"""

import enum
from datetime import datetime
from typing import Optional, Dict, Any, Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    # Zones
    ZONE_CREATED = "ZONE_CREATED"
    ZONE_DELETED = "ZONE_DELETED"

    # Pallet registry
    PALLET_REGISTERED = "PALLET_REGISTERED"
    PALLET_ZONES_CHANGED = "PALLET_ZONES_CHANGED"
    PALLET_RULES_UPDATED = "PALLET_RULES_UPDATED"

    # Pallet lifecycle
    PALLET_COMPLETED = "PALLET_COMPLETED"
    PALLET_PAYMENT_PENDING = "PALLET_PAYMENT_PENDING"
    PALLET_CONFIRMED = "PALLET_CONFIRMED"
    PALLET_COMPLETION_REVERSED = "PALLET_COMPLETION_REVERSED"

    # Reservations
    RESERVATION_PLACED = "RESERVATION_PLACED"
    RESERVATION_CANCELLED = "RESERVATION_CANCELLED"
    RESERVATION_STATUS_CHANGED = "RESERVATION_STATUS_CHANGED"
    RESERVATION_PALLET_CORRECTED = "RESERVATION_PALLET_CORRECTED"
    RESERVATION_PRODUCER_APPROVED = "RESERVATION_PRODUCER_APPROVED"
    RESERVATION_PRODUCER_DECLINED = "RESERVATION_PRODUCER_DECLINED"

    # Payments
    PAYMENT_REQUESTED = "PAYMENT_REQUESTED"
    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_CANCELLED = "PAYMENT_CANCELLED"


PALLET_SNAPSHOT_FIELDS = (
    "status", "is_complete", "completed_at", "payment_deadline",
    "pickup_zone_id", "delivery_zone_id",
)
RESERVATION_SNAPSHOT_FIELDS = (
    "status", "pallet_id", "allocation_state", "payment_deadline",
)


def _json_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def snapshot(obj: Any, fields: Iterable[str]) -> Dict[str, Any]:
    """JSON-safe copy of the given attributes."""
    return {field: _json_value(getattr(obj, field)) for field in fields}


def pallet_snapshot(pallet) -> Dict[str, Any]:
    return snapshot(pallet, PALLET_SNAPSHOT_FIELDS)


def reservation_snapshot(reservation) -> Dict[str, Any]:
    return snapshot(reservation, RESERVATION_SNAPSHOT_FIELDS)


async def log_event(
    db: AsyncSession,
    action: str,
    entity_type: str,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    actor: str = "system",
) -> AuditLog:
    """
    Add an audit entry to the current transaction.

    Args:
        db: Database session (transaction owned by the caller)
        action: Action being performed (use AuditAction constants)
        entity_type: "pallet", "reservation", "zone" or "payment_request"
        entity_id: ID of the entity acted upon
        metadata: Additional context as JSON
        actor: Who triggered the change ("system" for automatic transitions)

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def record_transition(
    db: AsyncSession,
    action: str,
    entity_type: str,
    entity_id: int,
    before: Dict[str, Any],
    after: Dict[str, Any],
    actor: str = "system",
    **context: Any,
) -> AuditLog:
    """Log a state change with its before/after snapshots."""
    metadata = {"before": before, "after": after}
    if context:
        metadata["context"] = {key: _json_value(value) for key, value in context.items()}
    return await log_event(db, action, entity_type, entity_id, metadata=metadata, actor=actor)


async def get_audit_trail(
    db: AsyncSession,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)

    if entity_id is not None:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
