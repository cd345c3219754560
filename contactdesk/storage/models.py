from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict

from contactdesk.storage.errors import StoreError, StoreErrorKind

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


@dataclass(frozen=True)
class AdminClaims:
    subject: str
    issued_at: int
    expires_at: int
    token_id: str
    role: str
    session_id: str
    token_type: str = ACCESS_TOKEN

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sub": self.subject,
            "iat": self.issued_at,
            "exp": self.expires_at,
            "jti": self.token_id,
            "role": self.role,
            "session_id": self.session_id,
            "token_type": self.token_type,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AdminClaims":
        """Build claims from a decoded token payload.

        Raises ``ValueError`` when a claim is missing or has the wrong type.
        """
        try:
            claims = cls(
                subject=payload["sub"],
                issued_at=payload["iat"],
                expires_at=payload["exp"],
                token_id=payload["jti"],
                role=payload["role"],
                session_id=payload["session_id"],
                token_type=payload.get("token_type", ACCESS_TOKEN),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"missing claim: {exc}") from exc
        for name in ("subject", "token_id", "role", "session_id", "token_type"):
            value = getattr(claims, name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"claim {name} must be a non-empty string")
        for name in ("issued_at", "expires_at"):
            value = getattr(claims, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"claim {name} must be an integer timestamp")
        return claims


@dataclass
class AdminUser:
    id: str
    username: str
    role: str = "admin"


@dataclass
class SessionRecord:
    """Server-side state of an authenticated admin session."""

    admin_id: str
    username: str
    role: str
    access_token: str
    refresh_token: str
    created_at: int = field(default_factory=lambda: int(time.time()))
    last_activity: int = field(default_factory=lambda: int(time.time()))

    def touched(self, now: int | None = None) -> "SessionRecord":
        return replace(self, last_activity=int(time.time()) if now is None else now)

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> "SessionRecord":
        try:
            data = json.loads(raw)
            return cls(
                admin_id=data["admin_id"],
                username=data["username"],
                role=data["role"],
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                created_at=int(data["created_at"]),
                last_activity=int(data["last_activity"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise StoreError(
                StoreErrorKind.SERIALIZATION,
                "session record is not valid JSON",
                {"error": str(exc)},
            ) from exc
