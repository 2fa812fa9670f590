"""
Billing enumerations.
"""

import enum


class PaymentRequestStatus(str, enum.Enum):
    """Payment request status enumeration."""
    REQUESTED = "REQUESTED"  # Charge requested from the payment collaborator
    SUCCEEDED = "SUCCEEDED"  # Collaborator reported success
    FAILED = "FAILED"  # Collaborator reported failure, may be requested again
    CANCELLED = "CANCELLED"  # Withdrawn by a completion reversal


# Requests that count as "outstanding" for the COMPLETING -> PAYMENT_PENDING step
OUTSTANDING_PAYMENT_STATUSES = (
    PaymentRequestStatus.REQUESTED,
    PaymentRequestStatus.SUCCEEDED,
)
