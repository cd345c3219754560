"""Key-value store contract shared between the Redis and in-memory backends."""

from __future__ import annotations

from typing import Optional, Protocol


class KeyValueStore(Protocol):
    """Primitives the auth services need from a TTL key-value store.

    Every coroutine raises :class:`~contactdesk.storage.errors.StoreError`
    when the backend cannot serve the request.
    """

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def replace(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Overwrite ``key`` only if it still exists; False when it was gone."""
        ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def consume(self, key: str) -> bool:
        """Delete ``key`` and report whether this call removed it."""
        ...

    async def increment(self, key: str, ttl_seconds: int) -> int:
        """Increment a counter and (re)arm its expiry, returning the new value."""
        ...

    async def expire(self, key: str, ttl_seconds: int) -> bool: ...

    async def ttl(self, key: str) -> Optional[int]: ...

    async def close(self) -> None: ...

    def verify_connection(self) -> None: ...
