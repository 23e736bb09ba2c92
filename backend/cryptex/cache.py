"""
In-memory TTL cache for market data.

Keeps the price endpoints and the TP/SL sweep from hammering the exchange
when many clients poll the same symbol.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class TTLCache:
    """
    Async-safe key/value cache where every entry carries its own expiry.

    ``get_or_fetch`` collapses concurrent misses for the same key into one
    upstream call (single-flight).
    """

    def __init__(self):
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = asyncio.Lock()
        self._in_flight: Dict[str, asyncio.Future] = {}

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if time.monotonic() >= expires_at:
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl_seconds: float):
        async with self._lock:
            self._entries[key] = (time.monotonic() + ttl_seconds, value)

    async def delete(self, key: str):
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self):
        async with self._lock:
            self._entries.clear()

    async def get_or_fetch(
        self, key: str, fetch_fn: Callable[[], Awaitable[Any]], ttl_seconds: float
    ) -> Any:
        """
        Return the cached value or fetch it once for all concurrent callers.

        ``None`` results are returned but never cached, so a failed upstream
        call is retried on the next request.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        if key in self._in_flight:
            return await self._in_flight[key]

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._in_flight[key] = future

        try:
            result = await fetch_fn()
            if result is not None:
                await self.set(key, result, ttl_seconds)
            future.set_result(result)
            return result
        except Exception as exc:
            future.set_exception(exc)
            # Nobody else may be awaiting; mark retrieved to silence asyncio warnings
            future.exception()
            raise
        finally:
            self._in_flight.pop(key, None)


# Global cache instance
market_cache = TTLCache()
