from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis import exceptions as redis_exceptions

from contactdesk.logging import get_logger
from contactdesk.storage.errors import StoreError, StoreErrorKind

logger = get_logger(__name__)


class RedisCache:
    """Thin Redis wrapper for sessions, CSRF tokens and login counters."""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        # TimeoutError subclasses RedisError, so it must be matched first
        try:
            yield
        except redis_exceptions.TimeoutError as exc:
            logger.warning("redis_timeout", operation=operation, error=str(exc))
            raise StoreError(
                StoreErrorKind.TIMEOUT,
                "redis operation timed out",
                {"operation": operation},
            ) from exc
        except redis_exceptions.RedisError as exc:
            logger.warning("redis_unavailable", operation=operation, error=str(exc))
            raise StoreError(
                StoreErrorKind.UNAVAILABLE,
                "redis is unavailable",
                {"operation": operation},
            ) from exc

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Use a short-lived synchronous client to avoid binding the async client to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            with self._translate_errors("ping"):
                sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str) -> Optional[str]:
        with self._translate_errors("get"):
            return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._translate_errors("set"):
            await self.client.set(key, value, ex=max(1, int(ttl_seconds)))

    async def replace(self, key: str, value: str, ttl_seconds: int) -> bool:
        """SET XX: rewrite ``key`` only when it still exists."""
        with self._translate_errors("replace"):
            return bool(await self.client.set(key, value, ex=max(1, int(ttl_seconds)), xx=True))

    async def exists(self, key: str) -> bool:
        with self._translate_errors("exists"):
            return bool(await self.client.exists(key))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with self._translate_errors("delete"):
            return int(await self.client.delete(*keys))

    async def consume(self, key: str) -> bool:
        """Single-use redemption of ``key``.

        DEL is atomic on the server, so when several callers race for the same
        key exactly one of them sees a removed count of 1.
        """
        with self._translate_errors("consume"):
            return int(await self.client.delete(key)) == 1

    async def increment(self, key: str, ttl_seconds: int) -> int:
        with self._translate_errors("increment"):
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, max(1, int(ttl_seconds)))
            try:
                count, _ = await pipe.execute()
            except redis_exceptions.ResponseError as exc:
                # INCR on a non-integer value
                raise StoreError(
                    StoreErrorKind.SERIALIZATION,
                    "counter value is not an integer",
                    {"key": key},
                ) from exc
        return int(count)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._translate_errors("expire"):
            return bool(await self.client.expire(key, max(1, int(ttl_seconds))))

    async def ttl(self, key: str) -> Optional[int]:
        """Remaining lifetime of ``key`` in seconds, or None when it has none."""
        with self._translate_errors("ttl"):
            remaining = await self.client.ttl(key)
        if remaining is None or remaining < 0:
            return None
        return int(remaining)

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()
