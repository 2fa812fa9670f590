"""
Collaborator dependencies for FastAPI.

Each collaborator is built once from settings and can be swapped through
app.dependency_overrides (tests use fakes for all three).
"""

from functools import lru_cache
from fastapi import Depends
from backend.app.domain.allocation.engine import AllocationEngine
from backend.app.domain.allocation.locking import get_pallet_locks
from backend.app.domain.billing.billing_service import PaymentCollaborator, resolve_payment_collaborator
from backend.app.domain.billing.pricing_resolver import MarginProvider, PricingResolver
from backend.app.services.geocoding import Geocoder, NominatimGeocoder


@lru_cache
def get_geocoder() -> Geocoder:
    return NominatimGeocoder.from_settings()


@lru_cache
def get_margin_provider() -> MarginProvider:
    return PricingResolver.resolve_margin_provider()


@lru_cache
def get_payment_collaborator() -> PaymentCollaborator:
    return resolve_payment_collaborator()


def get_locks():
    return get_pallet_locks()


def build_engine() -> AllocationEngine:
    """Engine wired from settings, for code running outside a request (jobs)."""
    return AllocationEngine(
        geocoder=get_geocoder(),
        margin_provider=get_margin_provider(),
        payment_collaborator=get_payment_collaborator(),
        locks=get_pallet_locks(),
    )


async def get_engine(
    geocoder: Geocoder = Depends(get_geocoder),
    margin_provider: MarginProvider = Depends(get_margin_provider),
    payment_collaborator: PaymentCollaborator = Depends(get_payment_collaborator),
    locks=Depends(get_locks),
) -> AllocationEngine:
    """
    FastAPI dependency returning the allocation engine for this request.
    """
    return AllocationEngine(
        geocoder=geocoder,
        margin_provider=margin_provider,
        payment_collaborator=payment_collaborator,
        locks=locks,
    )
