"""
Per-pallet serialization.

Checkout, registry writes, reconciliation and lifecycle transitions on the
same pallet run one at a time. Locks are keyed by zone pair because the pair
is what identifies the active pallet in the registry; a checkout knows its
pair before any pallet has been resolved.

Two backends:
- InMemoryPalletLocks: asyncio keyed mutex for single-instance deployments.
- RedisPalletLocks: redis lock for multi-instance deployments.

Both release on every exit path, including task cancellation.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional

from redis.exceptions import LockError

from backend.app.core.config import settings
from backend.app.core.exceptions import PalletLockTimeout
from backend.app.domain.allocation.zone_pair import ZonePair

logger = logging.getLogger(__name__)


class InMemoryPalletLocks:
    """Keyed asyncio mutex. Entries are dropped once nobody holds or waits on them."""

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds
        self._locks: Dict[ZonePair, asyncio.Lock] = {}
        self._refs: Dict[ZonePair, int] = {}

    @asynccontextmanager
    async def hold(self, pair: ZonePair) -> AsyncIterator[None]:
        lock = self._locks.get(pair)
        if lock is None:
            lock = self._locks[pair] = asyncio.Lock()
        self._refs[pair] = self._refs.get(pair, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), self.timeout_seconds)
            except asyncio.TimeoutError:
                raise PalletLockTimeout(pair.lock_key)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._refs[pair] -= 1
            if self._refs[pair] == 0:
                del self._refs[pair]
                del self._locks[pair]

    @asynccontextmanager
    async def hold_many(self, pairs: Iterable[ZonePair]) -> AsyncIterator[None]:
        async with _hold_sorted(self, pairs):
            yield


class RedisPalletLocks:
    """Distributed lock on a redis key per zone pair."""

    def __init__(self, client, timeout_seconds: Optional[float] = None, lease_seconds: float = 60.0):
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.lease_seconds = lease_seconds

    @asynccontextmanager
    async def hold(self, pair: ZonePair) -> AsyncIterator[None]:
        lock = self.client.lock(
            f"pallet-lock:{pair.lock_key}",
            timeout=self.lease_seconds,
            blocking_timeout=self.timeout_seconds,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise PalletLockTimeout(pair.lock_key)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Lease expired while held; the key is already gone
                logger.warning("Pallet lock %s expired before release", pair.lock_key)

    @asynccontextmanager
    async def hold_many(self, pairs: Iterable[ZonePair]) -> AsyncIterator[None]:
        async with _hold_sorted(self, pairs):
            yield


@asynccontextmanager
async def _hold_sorted(locks, pairs: Iterable[ZonePair]) -> AsyncIterator[None]:
    # Fixed acquisition order so two multi-pair holders cannot deadlock
    ordered: List[ZonePair] = sorted(set(pairs))
    if not ordered:
        yield
        return
    async with locks.hold(ordered[0]):
        async with _hold_sorted(locks, ordered[1:]):
            yield


_pallet_locks = None


def get_pallet_locks():
    """Return the process-wide lock manager selected by settings."""
    global _pallet_locks
    if _pallet_locks is None:
        if settings.pallet_lock_backend == "redis":
            from backend.app.core.redis_client import get_redis
            _pallet_locks = RedisPalletLocks(
                get_redis(),
                timeout_seconds=settings.pallet_lock_timeout_seconds,
            )
        else:
            _pallet_locks = InMemoryPalletLocks(timeout_seconds=settings.pallet_lock_timeout_seconds)
    return _pallet_locks
