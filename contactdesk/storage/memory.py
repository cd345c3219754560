from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from contactdesk.storage.errors import StoreError, StoreErrorKind


class MemoryCache:
    """In-process stand-in for :class:`RedisCache` used in dev mode and tests.

    Entries expire lazily: an expired key is dropped the next time any
    operation looks at it. ``clock`` returns seconds and defaults to
    ``time.monotonic``; tests inject a fake clock to step past windows.
    """

    def __init__(self, *, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        # key -> (value, absolute expiry or None)
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        # callers may run on different event loops, so no asyncio.Lock here
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def verify_connection(self) -> None:
        return None

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + max(1, int(ttl_seconds)))

    async def replace(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            if self._live(key) is None:
                return False
            self._entries[key] = (value, self._clock() + max(1, int(ttl_seconds)))
            return True

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    async def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._live(key) is not None:
                    del self._entries[key]
                    removed += 1
        return removed

    async def consume(self, key: str) -> bool:
        return await self.delete(key) == 1

    async def increment(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            entry = self._live(key)
            try:
                count = int(entry[0]) + 1 if entry else 1
            except ValueError as exc:
                raise StoreError(
                    StoreErrorKind.SERIALIZATION,
                    "counter value is not an integer",
                    {"key": key},
                ) from exc
            self._entries[key] = (str(count), self._clock() + max(1, int(ttl_seconds)))
            return count

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            self._entries[key] = (entry[0], self._clock() + max(1, int(ttl_seconds)))
            return True

    async def ttl(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[1] is None:
                return None
            return max(0, int(round(entry[1] - self._clock())))

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
