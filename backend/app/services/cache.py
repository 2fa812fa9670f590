"""
Caching Service.

Process-local TTL cache used for geocoding results. Entries are JSON-like
values; callers build their own keys. Expired entries are pruned on every
write and the store never holds more than MAX_ENTRIES keys, evicting the
entries closest to expiry first.
"""

from datetime import datetime, timedelta
from typing import Dict, Any, Optional

MAX_ENTRIES = 10_000

_cache_store: Dict[str, dict] = {}


def _prune(now: datetime) -> None:
    expired = [key for key, entry in _cache_store.items() if now > entry["expires_at"]]
    for key in expired:
        del _cache_store[key]

    overflow = len(_cache_store) - MAX_ENTRIES
    if overflow > 0:
        oldest = sorted(_cache_store, key=lambda key: _cache_store[key]["expires_at"])[:overflow]
        for key in oldest:
            del _cache_store[key]


class CacheService:

    @staticmethod
    async def get(key: str) -> Optional[Any]:
        entry = _cache_store.get(key)
        if not entry:
            return None

        if datetime.utcnow() > entry["expires_at"]:
            del _cache_store[key]
            return None

        return entry["data"]

    @staticmethod
    async def set(key: str, data: Any, ttl_seconds: int = 300):
        now = datetime.utcnow()
        _cache_store[key] = {
            "data": data,
            "expires_at": now + timedelta(seconds=ttl_seconds)
        }
        _prune(now)

    @staticmethod
    async def clear(prefix: Optional[str] = None) -> int:
        """Drop every entry (or only keys starting with prefix). Returns the count removed."""
        if prefix is None:
            removed = len(_cache_store)
            _cache_store.clear()
            return removed
        keys = [key for key in _cache_store if key.startswith(prefix)]
        for key in keys:
            del _cache_store[key]
        return len(keys)
