"""
Admin operation schemas.

Reports returned by reconciliation, completion sweeps and integrity checks.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from backend.app.models.pallet_enums import PalletStatus


class PalletCorrection(BaseModel):
    """A cached pallet_id that was repaired."""
    reservation_id: int
    old_pallet_id: Optional[int]
    new_pallet_id: Optional[int]


class PickupZoneDiscrepancy(BaseModel):
    """A reservation whose stored pickup zone no longer matches its producers."""
    reservation_id: int
    stored_pickup_zone_id: Optional[int]
    derived_pickup_zone_ids: List[int]


class ZonePairCollision(BaseModel):
    """More than one non-terminal pallet on the same zone pair."""
    pickup_zone_id: int
    delivery_zone_id: int
    pallet_ids: List[int]


class ReconciliationReport(BaseModel):
    """Outcome of a reconciliation run."""
    pallets_checked: int = 0
    reservations_scanned: int = 0
    corrected: List[PalletCorrection] = Field(default_factory=list)
    awaiting_pallet: List[int] = Field(default_factory=list)
    pickup_zone_discrepancies: List[PickupZoneDiscrepancy] = Field(default_factory=list)
    collisions: List[ZonePairCollision] = Field(default_factory=list)

    @property
    def changes(self) -> int:
        return len(self.corrected)


class ReconcileRequest(BaseModel):
    """Optional pallet restriction for reconciliation."""
    pallet_id: Optional[int] = None


class InconsistentCompletion(BaseModel):
    """A pallet marked complete whose rule no longer holds."""
    pallet_id: int
    status: PalletStatus
    bottles: int
    bottle_capacity: int
    would_complete: Optional[bool]


class CompletionSweepResult(BaseModel):
    """Outcome of a completion sweep across non-terminal pallets."""
    pallets_checked: int = 0
    completed: List[int] = Field(default_factory=list)
    payment_pending: List[int] = Field(default_factory=list)
    confirmed: List[int] = Field(default_factory=list)
    inconsistent: List[InconsistentCompletion] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
