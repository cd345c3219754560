from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from contactdesk.logging import get_logger

logger = get_logger(__name__)


class CsrfBinding(str, Enum):
    """Namespace a CSRF token is stored under.

    - SESSION: ``csrf:<session_id>:<token>``, redeemable only by the session
      the token was issued to
    - GLOBAL: ``csrf:<token>``, redeemable by any caller holding the token
    """

    SESSION = "session"
    GLOBAL = "global"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the contact desk service."""

    redis_url: str = env_field("redis://127.0.0.1:6379/0", "REDIS_URL")
    redis_socket_timeout: float = env_field(5.0, "REDIS_SOCKET_TIMEOUT", gt=0)
    use_memory_store: bool = env_field(
        False,
        "USE_MEMORY_STORE",
        description="Keep sessions and counters in process memory instead of Redis (dev/tests only)",
    )
    test_mode: bool = env_field(False, "TEST_MODE")

    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_leeway_seconds: int = env_field(
        0,
        "JWT_LEEWAY_SECONDS",
        ge=0,
        description="Allowed clock skew when checking token expiry",
    )

    admin_username: str | None = env_field(None, "ADMIN_USERNAME")
    admin_password_hash: str | None = env_field(
        None,
        "ADMIN_PASSWORD_HASH",
        description="Argon2 PHC string; generate with scripts/hash_admin_password.py",
    )

    access_token_ttl_seconds: int = env_field(3600, "ACCESS_TOKEN_TTL_SECONDS", gt=0)
    refresh_token_ttl_seconds: int = env_field(
        86400 * 7, "REFRESH_TOKEN_TTL_SECONDS", gt=0
    )
    csrf_token_ttl_seconds: int = env_field(900, "CSRF_TOKEN_TTL_SECONDS", gt=0)
    csrf_binding: CsrfBinding = env_field(CsrfBinding.SESSION, "CSRF_BINDING")

    max_login_attempts: int = env_field(5, "MAX_LOGIN_ATTEMPTS", gt=0)
    login_attempt_window_seconds: int = env_field(
        900, "LOGIN_ATTEMPT_WINDOW_SECONDS", gt=0
    )

    admin_dashboard_url: str = env_field("/admin/dashboard", "ADMIN_DASHBOARD_URL")
    request_timeout_seconds: float = env_field(30.0, "REQUEST_TIMEOUT_SECONDS", gt=0)

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("csrf_binding", mode="before")
    @classmethod
    def _validate_csrf_binding(cls, value: Any) -> CsrfBinding:
        if isinstance(value, str):
            value = value.strip().lower()
        return CsrfBinding(value)

    @field_validator("jwt_secret", "admin_username", "admin_password_hash")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def _warn_on_weak_setup(self) -> "Settings":
        if self.jwt_secret and len(self.jwt_secret) < 32 and not self.test_mode:
            logger.warning("jwt_secret_weak", length=len(self.jwt_secret), minimum=32)
        if self.use_memory_store and not self.test_mode:
            logger.warning(
                "memory_store_enabled",
                message="Sessions and login counters are process-local; do not run several workers.",
            )
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
