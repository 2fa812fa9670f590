"""
Zone pair value type.

A (pickup_zone_id, delivery_zone_id) pair identifies at most one active
pallet and is the key used to serialize work on that pallet.
"""

from typing import NamedTuple


class ZonePair(NamedTuple):
    pickup_zone_id: int
    delivery_zone_id: int

    @property
    def lock_key(self) -> str:
        return f"{self.pickup_zone_id}:{self.delivery_zone_id}"
