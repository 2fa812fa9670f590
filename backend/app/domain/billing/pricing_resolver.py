"""
Margin Resolver.

Profit per wine line comes from outside the engine. Resolution order:
1. HTTP pricing service (when pricing_service_url is configured)
2. Flat per-bottle margin from settings
"""

import logging
from typing import Optional, Protocol

import httpx

from backend.app.core.config import settings
from backend.app.core.exceptions import CollaboratorUnavailable

logger = logging.getLogger(__name__)


class MarginProvider(Protocol):
    async def profit_contribution(self, wine_id: int, quantity: int) -> float:
        """Profit in SEK for `quantity` bottles of the wine."""
        ...


class FlatMarginProvider:
    """Same margin for every bottle."""

    def __init__(self, margin_sek_per_bottle: float):
        self.margin_sek_per_bottle = margin_sek_per_bottle

    async def profit_contribution(self, wine_id: int, quantity: int) -> float:
        return self.margin_sek_per_bottle * quantity


class HttpMarginProvider:
    """
    Asks the pricing service for the profit of a wine line.

    GET {base_url}/wines/{wine_id}/profit?quantity=N -> {"profit_sek": float}
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def profit_contribution(self, wine_id: int, quantity: int) -> float:
        url = f"{self.base_url}/wines/{wine_id}/profit"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.get(url, params={"quantity": quantity})
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise CollaboratorUnavailable("pricing", f"wine {wine_id}: {exc}") from exc
        return float(response.json()["profit_sek"])


class PricingResolver:

    @staticmethod
    def resolve_margin_provider() -> MarginProvider:
        """Pick the margin provider from settings."""
        if settings.pricing_service_url:
            logger.info("Using pricing service at %s", settings.pricing_service_url)
            return HttpMarginProvider(settings.pricing_service_url)
        return FlatMarginProvider(settings.default_margin_sek_per_bottle)
