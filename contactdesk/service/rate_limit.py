from __future__ import annotations

from contactdesk.logging import get_logger
from contactdesk.service.errors import RateLimitedError
from contactdesk.storage.common import KeyValueStore

logger = get_logger(__name__)


class LoginRateLimiter:
    """Counts failed logins per username inside a sliding window.

    Every failure re-arms the window, so the block holds for as long as
    failures keep arriving. The check and the increment are separate store
    calls; concurrent failures for one username may overshoot the cap by the
    number of attempts in flight.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_attempts: int = 5,
        window_seconds: int = 900,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    @staticmethod
    def _key(username: str) -> str:
        return f"login_attempts:{username}"

    async def attempts(self, username: str) -> int:
        """Current failure count; a corrupt counter is dropped and reads as 0."""
        raw = await self.store.get(self._key(username))
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            logger.warning("login_attempt_counter_corrupt", username=username)
            await self.store.delete(self._key(username))
            return 0

    async def check_allowed(self, username: str) -> None:
        count = await self.attempts(username)
        if count >= self.max_attempts:
            logger.warning("login_rate_limited", username=username, attempts=count)
            raise RateLimitedError(
                "Too many failed login attempts. Please try again later.",
                detail={"retry_after_seconds": await self._retry_after(username)},
            )

    async def _retry_after(self, username: str) -> int:
        remaining = await self.store.ttl(self._key(username))
        return remaining if remaining is not None else self.window_seconds

    async def record_failure(self, username: str) -> int:
        count = await self.store.increment(self._key(username), self.window_seconds)
        logger.info("login_failure_recorded", username=username, attempts=count)
        return count

    async def clear(self, username: str) -> None:
        await self.store.delete(self._key(username))
