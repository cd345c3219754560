from __future__ import annotations

import re
import secrets
import string
from typing import Optional

from contactdesk.config import CsrfBinding
from contactdesk.logging import get_logger
from contactdesk.service.errors import AuthenticationError
from contactdesk.storage.common import KeyValueStore

logger = get_logger(__name__)

CSRF_TOKEN_LENGTH = 32
_TOKEN_ALPHABET = string.ascii_letters + string.digits
_TOKEN_RE = re.compile(r"^[A-Za-z0-9]{1,128}$")
SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

INVALID_CSRF_MESSAGE = "Invalid or expired CSRF token"


def is_valid_session_id(session_id: Optional[str]) -> bool:
    return bool(session_id) and SESSION_ID_RE.match(session_id) is not None


class CsrfService:
    """Issues single-use anti-CSRF tokens and redeems them at most once."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_seconds: int = 900,
        binding: CsrfBinding = CsrfBinding.SESSION,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.binding = binding

    def _key(self, session_id: str, token: str) -> str:
        if self.binding == CsrfBinding.GLOBAL:
            return f"csrf:{token}"
        return f"csrf:{session_id}:{token}"

    @staticmethod
    def _generate() -> str:
        # 32 characters over 62 symbols is roughly 190 bits of entropy
        return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(CSRF_TOKEN_LENGTH))

    async def create_token(self, session_id: str) -> tuple[str, int]:
        """Store a fresh token for ``session_id`` and return it with its lifetime."""
        if not is_valid_session_id(session_id):
            raise AuthenticationError("Invalid session")
        token = self._generate()
        await self.store.set(self._key(session_id, token), "1", self.ttl_seconds)
        logger.debug("csrf_token_issued", binding=self.binding.value)
        return token, self.ttl_seconds

    async def validate_and_consume(self, session_id: str, token: str) -> None:
        """Redeem ``token`` for ``session_id`` or raise :class:`AuthenticationError`.

        Redemption is a single delete on the store, so two concurrent
        submissions of the same token cannot both succeed.
        """
        if not is_valid_session_id(session_id) or not token or not _TOKEN_RE.match(token):
            logger.warning("csrf_token_rejected", reason="malformed")
            raise AuthenticationError(INVALID_CSRF_MESSAGE)
        if not await self.store.consume(self._key(session_id, token)):
            logger.warning("csrf_token_rejected", reason="unknown_or_used")
            raise AuthenticationError(INVALID_CSRF_MESSAGE)
