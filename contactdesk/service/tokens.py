from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from contactdesk.logging import get_logger
from contactdesk.service.errors import InvalidTokenError, ServerError
from contactdesk.storage.models import ACCESS_TOKEN, REFRESH_TOKEN, AdminClaims

logger = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_claims: AdminClaims
    refresh_claims: AdminClaims

    @property
    def expires_in(self) -> int:
        return self.access_claims.expires_at - self.access_claims.issued_at


class TokenService:
    """Signs and verifies admin claims as HS256 JWTs.

    The service holds no state besides its configuration; verification is a
    pure function of the secret and the current time.
    """

    def __init__(
        self,
        secret: Optional[str],
        *,
        access_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 86400 * 7,
        leeway_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            logger.error("jwt_secret_missing")
            raise ServerError("token signing secret is not configured")
        self._secret = secret.encode()
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.leeway_seconds = leeway_seconds
        self._clock = clock

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _signature_matches(self, header_b64: str, payload_b64: str, sig_b64: str) -> bool:
        expected = self._sign(f"{header_b64}.{payload_b64}")
        return hmac.compare_digest(expected.encode(), sig_b64.encode("utf-8", "replace"))

    def _encode(self, claims: AdminClaims) -> tuple[str, AdminClaims]:
        if claims.expires_at <= claims.issued_at:
            raise ValueError("expires_at must be later than issued_at")
        claims = replace(claims, token_id=str(uuid.uuid4()))
        header_enc = self._encode_segment(
            json.dumps(_HEADER, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(claims.to_payload(), separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}", claims

    def issue(self, claims: AdminClaims) -> str:
        """Sign ``claims`` with a freshly generated token id."""
        token, _ = self._encode(claims)
        return token

    def issue_pair(self, subject: str, role: str, session_id: str) -> TokenPair:
        now = int(self._clock())

        def _claims(token_type: str, ttl: int) -> AdminClaims:
            return AdminClaims(
                subject=subject,
                issued_at=now,
                expires_at=now + ttl,
                token_id="",
                role=role,
                session_id=session_id,
                token_type=token_type,
            )

        access_token, access_claims = self._encode(
            _claims(ACCESS_TOKEN, self.access_ttl_seconds)
        )
        refresh_token, refresh_claims = self._encode(
            _claims(REFRESH_TOKEN, self.refresh_ttl_seconds)
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_claims=access_claims,
            refresh_claims=refresh_claims,
        )

    def verify(self, token: str, *, expected_type: Optional[str] = None) -> AdminClaims:
        """Return the claims of a valid token or raise :class:`InvalidTokenError`.

        Tokens signed with another secret or any algorithm other than HS256
        are rejected, as are expired ones (allowing ``leeway_seconds`` of
        clock skew).
        """
        parts = token.split(".") if token else []
        if len(parts) != 3:
            raise InvalidTokenError("malformed token")
        header_b64, payload_b64, sig_b64 = parts

        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            logger.warning("jwt_header_decode_failed")
            raise InvalidTokenError("malformed token") from None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise InvalidTokenError("unsupported token algorithm")
        if header.get("typ", "JWT") != "JWT":
            raise InvalidTokenError("unsupported token type")

        if not self._signature_matches(header_b64, payload_b64, sig_b64):
            raise InvalidTokenError("token signature mismatch")

        try:
            payload: Any = json.loads(self._decode_segment(payload_b64))
            if not isinstance(payload, dict):
                raise ValueError("payload is not an object")
            claims = AdminClaims.from_payload(payload)
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidTokenError("malformed token") from None

        if claims.expires_at <= claims.issued_at:
            raise InvalidTokenError("token lifetime is invalid")
        if claims.expires_at <= self._clock() - self.leeway_seconds:
            raise InvalidTokenError("token expired")
        if expected_type is not None and claims.token_type != expected_type:
            raise InvalidTokenError("unexpected token type")
        return claims

    def recover_session_id(self, token: str) -> Optional[str]:
        """Best-effort session id of a signed token, ignoring its expiry.

        Used by logout, which must work for tokens that have expired. The
        signature is still checked so a forged token cannot name a session.
        """
        parts = token.split(".") if token else []
        if len(parts) != 3:
            return None
        header_b64, payload_b64, sig_b64 = parts
        if not self._signature_matches(header_b64, payload_b64, sig_b64):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError):
            return None
        session_id = payload.get("session_id") if isinstance(payload, dict) else None
        return session_id if isinstance(session_id, str) and session_id else None
