"""
Reservation-related enumerations.
"""

import enum


class ReservationStatus(str, enum.Enum):
    """Order reservation status enumeration."""
    PENDING_PRODUCER_APPROVAL = "pending_producer_approval"  # Awaiting producer sign-off
    PLACED = "placed"  # Customer checked out
    APPROVED = "approved"  # Producer approved the quantities
    PENDING_PAYMENT = "pending_payment"  # Pallet completed, payment requested
    CONFIRMED = "confirmed"  # Paid
    CANCELLED = "cancelled"  # Never counts toward fill


class AllocationState(str, enum.Enum):
    """Whether the reservation's zone pair currently resolves to a pallet."""
    AWAITING_PALLET = "awaiting_pallet"  # No pallet exists yet for the zone pair
    ALLOCATED = "allocated"  # pallet_id points at the resolved pallet


# Statuses whose bottles count toward a pallet's fill
FILL_COUNTED_STATUSES = (
    ReservationStatus.PENDING_PRODUCER_APPROVAL,
    ReservationStatus.PLACED,
    ReservationStatus.APPROVED,
    ReservationStatus.PENDING_PAYMENT,
    ReservationStatus.CONFIRMED,
)

# Statuses a completed pallet bills; pending_producer_approval waits for its decision
BILLABLE_STATUSES = (
    ReservationStatus.PLACED,
    ReservationStatus.APPROVED,
)
