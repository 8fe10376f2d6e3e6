"""
Cache LRU con TTL davanti al registry dei tenant.
Le chiavi sono gli identificativi richiesti (id o subdomain).
"""
from typing import Any, Dict, Generic, Optional, Tuple, TypeVar
from collections import OrderedDict
import asyncio
import logging
import time

logger = logging.getLogger(__name__)

V = TypeVar("V")


class TenantCache(Generic[V]):
    """
    Solo lookup riusciti: chi la usa non deve inserire i miss.
    Un'entry scaduta conta come miss e viene rimossa alla lettura.
    """

    def __init__(self, max_size: int = 1000, ttl_seconds: float = 300):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds

        # key -> (valore, scadenza monotonic); in testa il meno recente
        self._entries: "OrderedDict[str, Tuple[V, float]]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._counters = {"hits": 0, "misses": 0, "evictions": 0}

        logger.info(f"TenantCache ready (max_size={max_size}, ttl={ttl_seconds}s)")

    async def get(self, key: str) -> Optional[V]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._counters["misses"] += 1
                return None

            value, expires_at = entry
            if time.monotonic() >= expires_at:
                del self._entries[key]
                self._counters["misses"] += 1
                logger.debug(f"Cache entry expired: {key}")
                return None

            self._entries.move_to_end(key)
            self._counters["hits"] += 1
            return value

    async def set(self, key: str, value: V):
        async with self._lock:
            self._entries[key] = (value, time.monotonic() + self.ttl_seconds)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self._counters["evictions"] += 1
                logger.debug(f"Cache full, dropped {evicted}")

    async def delete(self, key: str):
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self):
        async with self._lock:
            self._entries.clear()
        logger.info("Tenant cache cleared")

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        lookups = self._counters["hits"] + self._counters["misses"]
        return {
            **self._counters,
            "size": len(self._entries),
            "max_size": self.max_size,
            "hit_rate_percent": round(self._counters["hits"] * 100 / lookups, 2) if lookups else 0.0,
        }
