"""
Pallet-related enumerations.
"""

import enum


class PalletStatus(str, enum.Enum):
    """Pallet status enumeration."""
    OPEN = "OPEN"  # Collecting reservations
    COMPLETING = "COMPLETING"  # Completion rule matched, payment requests being issued
    PAYMENT_PENDING = "PAYMENT_PENDING"  # Every reservation has an outstanding payment request
    CONFIRMED = "CONFIRMED"  # Every reservation paid (terminal)


# A pallet in one of these statuses holds its zone pair
ACTIVE_PALLET_STATUSES = (
    PalletStatus.OPEN,
    PalletStatus.COMPLETING,
    PalletStatus.PAYMENT_PENDING,
)
