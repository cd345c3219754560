from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from contactdesk.config import get_settings, reset_settings_cache
from contactdesk.logging import get_logger
from contactdesk.service.auth import AdminAuthService
from contactdesk.service.csrf import CsrfService
from contactdesk.service.rate_limit import LoginRateLimiter
from contactdesk.service.tokens import TokenService
from contactdesk.storage.common import KeyValueStore
from contactdesk.storage.errors import StoreError
from contactdesk.storage.memory import MemoryCache
from contactdesk.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        self.store: KeyValueStore
        if self.settings.use_memory_store:
            self.store = MemoryCache()
        else:
            cache = RedisCache(
                self.settings.redis_url, socket_timeout=self.settings.redis_socket_timeout
            )
            try:
                cache.verify_connection()
            except StoreError as exc:
                logger.error(
                    "runtime_store_init_failed",
                    redis_url=_mask_url_password(self.settings.redis_url),
                    kind=exc.kind.value,
                )
                raise RuntimeError(
                    "Redis is required for admin sessions, CSRF tokens and login "
                    "rate limits; start Redis or set USE_MEMORY_STORE=true for local use."
                ) from exc
            self.store = cache

        self.tokens = TokenService(
            self.settings.jwt_secret,
            access_ttl_seconds=self.settings.access_token_ttl_seconds,
            refresh_ttl_seconds=self.settings.refresh_token_ttl_seconds,
            leeway_seconds=self.settings.jwt_leeway_seconds,
        )
        self.csrf = CsrfService(
            self.store,
            ttl_seconds=self.settings.csrf_token_ttl_seconds,
            binding=self.settings.csrf_binding,
        )
        self.rate_limiter = LoginRateLimiter(
            self.store,
            max_attempts=self.settings.max_login_attempts,
            window_seconds=self.settings.login_attempt_window_seconds,
        )
        self.auth = AdminAuthService(
            self.store,
            self.tokens,
            self.csrf,
            self.rate_limiter,
            admin_username=self.settings.admin_username,
            admin_password_hash=self.settings.admin_password_hash,
            dashboard_url=self.settings.admin_dashboard_url,
        )

        logger.info(
            "runtime_initialized",
            store_type="memory" if self.settings.use_memory_store else "redis",
            csrf_binding=self.settings.csrf_binding.value,
            admin_configured=bool(
                self.settings.admin_username and self.settings.admin_password_hash
            ),
        )

    async def close(self) -> None:
        await self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.store, RedisCache):
            try:
                loop = asyncio.get_running_loop()
                loop.create_task(runtime.close())
            except RuntimeError:
                asyncio.run(runtime.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
