"""
Address geocoding via OpenStreetMap Nominatim.

Geocoding runs before any pallet lock is taken. Transient failures
(transport errors, 5xx, 429) are retried with bounded exponential backoff
behind a circuit breaker; "no result" is final and raised immediately.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional, Protocol

import httpx

from backend.app.core.config import settings
from backend.app.core.exceptions import GeocodeError
from backend.app.core.reliability import (
    CircuitBreaker, CircuitOpenError, async_retry, geocoder_circuit_breaker
)
from backend.app.services.cache import CacheService

logger = logging.getLogger(__name__)

CACHE_PREFIX = "geocode:"


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lon: float
    display_name: Optional[str] = None
    country_code: Optional[str] = None


class Geocoder(Protocol):
    async def geocode(self, address: str) -> GeoPoint:
        ...


class _TransientGeocodeFailure(Exception):
    pass


def normalize_address(address: str) -> str:
    return " ".join(address.split())


class NominatimGeocoder:
    """Geocoder backed by the public Nominatim search API."""

    def __init__(
        self,
        base_url: str,
        user_agent: str,
        country_codes: str = "",
        timeout_seconds: float = 10.0,
        retry_attempts: int = 3,
        retry_base_delay_seconds: float = 0.5,
        retry_max_delay_seconds: float = 4.0,
        cache_ttl_seconds: int = 86400,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.user_agent = user_agent
        self.country_codes = country_codes
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self.retry_base_delay_seconds = retry_base_delay_seconds
        self.retry_max_delay_seconds = retry_max_delay_seconds
        self.cache_ttl_seconds = cache_ttl_seconds
        self.breaker = breaker or geocoder_circuit_breaker
        self.transport = transport

    @classmethod
    def from_settings(cls) -> "NominatimGeocoder":
        return cls(
            base_url=settings.geocoder_url,
            user_agent=settings.geocoder_user_agent,
            country_codes=settings.geocoder_country_codes,
            timeout_seconds=settings.geocoder_timeout_seconds,
            retry_attempts=settings.geocoder_retry_attempts,
            retry_base_delay_seconds=settings.geocoder_retry_base_delay_seconds,
            retry_max_delay_seconds=settings.geocoder_retry_max_delay_seconds,
            cache_ttl_seconds=settings.geocoder_cache_ttl_seconds,
        )

    async def geocode(self, address: str) -> GeoPoint:
        query = normalize_address(address)
        if not query:
            raise GeocodeError(address, reason="EMPTY_ADDRESS", message="Address is empty")

        cached = await CacheService.get(CACHE_PREFIX + query.lower())
        if cached is not None:
            return GeoPoint(**cached)

        def _log_retry(attempt: int, delay: float, exc: BaseException) -> None:
            logger.warning("Geocoding attempt %s for '%s' failed (%s); retrying in %.2fs", attempt, query, exc, delay)

        try:
            point = await self.breaker.call(
                async_retry,
                lambda: self._search(query),
                attempts=self.retry_attempts,
                base_delay_seconds=self.retry_base_delay_seconds,
                max_delay_seconds=self.retry_max_delay_seconds,
                retry_on=(_TransientGeocodeFailure,),
                on_retry=_log_retry,
            )
        except CircuitOpenError:
            raise GeocodeError(address, reason="GEOCODER_UNAVAILABLE", message="Geocoding service temporarily unavailable")
        except _TransientGeocodeFailure as exc:
            raise GeocodeError(address, reason="GEOCODER_UNAVAILABLE", message=f"Geocoding failed after retries: {exc}")

        if point is None:
            raise GeocodeError(address, reason="NO_RESULTS", message="No coordinates found for this address")

        await CacheService.set(CACHE_PREFIX + query.lower(), asdict(point), ttl_seconds=self.cache_ttl_seconds)
        logger.info("Geocoded '%s' -> (%.5f, %.5f)", query, point.lat, point.lon)
        return point

    async def _search(self, query: str) -> Optional[GeoPoint]:
        params = {
            "format": "json",
            "q": query,
            "limit": 1,
            "addressdetails": 1,
            "accept-language": "en",
        }
        if self.country_codes:
            params["countrycodes"] = self.country_codes
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.get(self.base_url, params=params, headers=headers)
        except httpx.TransportError as exc:
            raise _TransientGeocodeFailure(str(exc)) from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise _TransientGeocodeFailure(f"HTTP {response.status_code}")
        if response.status_code >= 400:
            raise GeocodeError(query, reason="GEOCODER_REJECTED", message=f"Geocoding API error: {response.status_code}")

        data = response.json()
        if not data:
            return None

        result = data[0]
        country_code = (result.get("address") or {}).get("country_code")
        return GeoPoint(
            lat=float(result["lat"]),
            lon=float(result["lon"]),
            display_name=result.get("display_name"),
            country_code=country_code.upper() if country_code else None,
        )
