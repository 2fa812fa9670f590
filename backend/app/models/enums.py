"""
Zone enumerations.

Defines the zone roles used when matching addresses and pairing pallets.
"""

import enum


class ZoneType(str, enum.Enum):
    """
    Zone type enumeration.

    Types:
        PICKUP: Area where producers hand bottles over to the pallet
        DELIVERY: Area where customers receive their bottles
    """
    PICKUP = "pickup"
    DELIVERY = "delivery"
