"""
Fill Calculator.

Counts what is on a pallet: bottles and profit over the reservations that
resolve to it, with producer MOQ gating. A producer whose bottles on the
pallet stay below its minimum order quantity is listed in per_producer but
contributes nothing to bottles or profit.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.domain.allocation.reservation_assigner import ReservationAssigner
from backend.app.domain.billing.pricing_resolver import MarginProvider
from backend.app.models.pallet import Pallet
from backend.app.models.producer import Producer
from backend.app.models.reservation import OrderReservation, ReservationItem
from backend.app.models.reservation_enums import FILL_COUNTED_STATUSES
from backend.app.schemas.completion_rules import CompletionMetrics


@dataclass
class FillMetrics:
    bottles: int = 0
    profit_sek: float = 0.0
    per_producer: Dict[int, int] = field(default_factory=dict)
    gated_producers: List[int] = field(default_factory=list)
    reservation_ids: List[int] = field(default_factory=list)

    def rule_metrics(self) -> CompletionMetrics:
        return CompletionMetrics(bottles=self.bottles, profit_sek=self.profit_sek)

    def fill_percentage(self, bottle_capacity: int) -> float:
        if not bottle_capacity:
            return 0.0
        return round(self.bottles / bottle_capacity * 100, 2)


class FillCalculator:
    """Computes pallet fill metrics; profit comes from the margin provider."""

    def __init__(self, margin_provider: MarginProvider):
        self.margin_provider = margin_provider

    async def compute(self, db: AsyncSession, pallet: Pallet) -> FillMetrics:
        result = await db.execute(
            select(
                ReservationItem.reservation_id,
                ReservationItem.producer_id,
                ReservationItem.wine_id,
                ReservationItem.quantity,
                Producer.moq_min_bottles,
            )
            .join(OrderReservation, OrderReservation.id == ReservationItem.reservation_id)
            .join(Producer, Producer.id == ReservationItem.producer_id)
            .where(
                *ReservationAssigner.resolution_criteria(pallet),
                OrderReservation.status.in_(FILL_COUNTED_STATUSES),
            )
            .order_by(ReservationItem.reservation_id, ReservationItem.id)
        )
        rows = result.all()

        per_producer: Dict[int, int] = defaultdict(int)
        moq: Dict[int, int] = {}
        reservation_ids = set()
        for reservation_id, producer_id, _wine_id, quantity, moq_min_bottles in rows:
            per_producer[producer_id] += quantity
            moq[producer_id] = moq_min_bottles or 0
            reservation_ids.add(reservation_id)

        gated = sorted(p for p, bottles in per_producer.items() if bottles < moq[p])

        per_wine: Dict[int, int] = defaultdict(int)
        for _reservation_id, producer_id, wine_id, quantity, _moq in rows:
            if producer_id not in gated:
                per_wine[wine_id] += quantity

        profit = 0.0
        for wine_id, quantity in sorted(per_wine.items()):
            profit += await self.margin_provider.profit_contribution(wine_id, quantity)

        return FillMetrics(
            bottles=sum(per_wine.values()),
            profit_sek=round(profit, 2),
            per_producer=dict(per_producer),
            gated_producers=gated,
            reservation_ids=sorted(reservation_ids),
        )
