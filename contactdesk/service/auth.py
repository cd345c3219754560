from __future__ import annotations

import asyncio
import hmac
import secrets
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from argon2 import PasswordHasher, Type, extract_parameters
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from contactdesk.logging import get_logger
from contactdesk.service.csrf import CsrfService, is_valid_session_id
from contactdesk.service.errors import (
    AuthenticationError,
    BadRequestError,
    InvalidTokenError,
    ServerError,
)
from contactdesk.service.rate_limit import LoginRateLimiter
from contactdesk.service.tokens import TokenService
from contactdesk.storage.common import KeyValueStore
from contactdesk.storage.errors import StoreError, StoreErrorKind
from contactdesk.storage.models import ACCESS_TOKEN, AdminClaims, AdminUser, SessionRecord

logger = get_logger(__name__)

SESSION_COOKIE_NAME = "__Secure-admin-session"
BROWSER_SESSION_COOKIE_NAME = "session_id"
CSRF_HEADER_NAME = "X-CSRF-Token"
LOGIN_PATH = "/admin/login"
ADMIN_ROLE = "admin"
NO_STORE_CACHE_CONTROL = "no-store, no-cache, must-revalidate, private"


def session_cookie_header(access_token: str, refresh_token: str, max_age: int) -> str:
    return (
        f"{SESSION_COOKIE_NAME}={access_token}:{refresh_token}; "
        f"HttpOnly; Secure; SameSite=Strict; Path=/; Max-Age={max_age}"
    )


def cleared_session_cookie_header() -> str:
    return f"{SESSION_COOKIE_NAME}=; HttpOnly; Secure; SameSite=Strict; Path=/; Max-Age=0"


def browser_session_cookie_header(session_id: str) -> str:
    return (
        f"{BROWSER_SESSION_COOKIE_NAME}={session_id}; "
        "HttpOnly; Secure; SameSite=Strict; Path=/"
    )


def new_browser_session_id() -> str:
    return secrets.token_urlsafe(24)


def access_token_from_cookie(cookie_value: Optional[str]) -> Optional[str]:
    """First ``:``-separated segment of the session cookie, if any."""
    if not cookie_value:
        return None
    access_token = cookie_value.split(":", 1)[0].strip()
    return access_token or None


def session_key(session_id: str) -> str:
    return f"admin_session:{session_id}"


def token_index_key(access_token: str) -> str:
    return f"token_session:{access_token}"


@dataclass(frozen=True)
class LoginResult:
    redirect_url: str
    expires_in: int
    session_id: str
    set_cookie: str


class AdminAuthService:
    """Login, logout and per-request session checks for the single admin account.

    The service keeps no durable state of its own; sessions, CSRF tokens and
    attempt counters all live in the key-value store so several processes can
    serve the same admin consistently.
    """

    def __init__(
        self,
        store: KeyValueStore,
        tokens: TokenService,
        csrf: CsrfService,
        rate_limiter: LoginRateLimiter,
        *,
        admin_username: Optional[str],
        admin_password_hash: Optional[str],
        dashboard_url: str = "/admin/dashboard",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.csrf = csrf
        self.rate_limiter = rate_limiter
        self.admin_username = admin_username
        self.admin_password_hash = admin_password_hash
        self.dashboard_url = dashboard_url
        self._clock = clock
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self._dummy_hash: Optional[str] = None

    @property
    def session_ttl_seconds(self) -> int:
        return self.tokens.access_ttl_seconds

    def _admin_user(self) -> AdminUser:
        admin_id = str(uuid.uuid5(uuid.NAMESPACE_URL, f"contactdesk:admin:{self.admin_username}"))
        return AdminUser(id=admin_id, username=self.admin_username, role=ADMIN_ROLE)

    def _require_credentials_config(self) -> str:
        """Return a dummy hash with the configured hash's cost parameters.

        Missing or unparseable admin credentials are a deployment problem and
        surface as a server error, never as a failed login.
        """
        if not self.admin_username or not self.admin_password_hash:
            logger.error("admin_credentials_not_configured")
            raise ServerError("admin credentials are not configured")
        if self._dummy_hash is None:
            try:
                params = extract_parameters(self.admin_password_hash)
            except ValueError as exc:
                logger.error("admin_password_hash_invalid", error=str(exc))
                raise ServerError("admin password hash is invalid") from exc
            hasher = PasswordHasher.from_parameters(params)
            self._dummy_hash = hasher.hash(secrets.token_urlsafe(16))
        return self._dummy_hash

    def _verify_password(self, password_hash: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as exc:
            logger.warning("password_verification_failed", error=str(exc))
            return False

    async def _check_credentials(self, username: str, password: str) -> bool:
        dummy_hash = await asyncio.to_thread(self._require_credentials_config)
        username_ok = hmac.compare_digest(
            username.encode("utf-8"), self.admin_username.encode("utf-8")
        )
        # An unknown username still pays for one full hash verification
        target_hash = self.admin_password_hash if username_ok else dummy_hash
        password_ok = await asyncio.to_thread(self._verify_password, target_hash, password)
        return username_ok and password_ok

    async def login(
        self,
        username: str,
        password: str,
        *,
        csrf_token: Optional[str],
        browser_session_id: Optional[str],
    ) -> LoginResult:
        """Authenticate the admin and open a new session.

        Steps run strictly in order and the first failure aborts the rest:
        CSRF presence, CSRF redemption, rate limit, empty input, credentials,
        then session creation.
        """
        if not csrf_token or not browser_session_id:
            logger.warning(
                "admin_login_rejected",
                reason="missing_csrf_or_session",
                has_csrf=bool(csrf_token),
                has_session=bool(browser_session_id),
            )
            raise AuthenticationError("Missing CSRF token or session")

        await self.csrf.validate_and_consume(browser_session_id, csrf_token)
        await self.rate_limiter.check_allowed(username)

        if not username.strip() or not password:
            await self.rate_limiter.record_failure(username)
            logger.warning("admin_login_rejected", reason="empty_credentials")
            raise BadRequestError("Username and password are required")

        if not await self._check_credentials(username, password):
            attempts = await self.rate_limiter.record_failure(username)
            logger.warning(
                "admin_login_rejected",
                reason="invalid_credentials",
                username=username,
                attempts=attempts,
            )
            raise AuthenticationError("Invalid credentials")

        admin = self._admin_user()
        session_id = secrets.token_urlsafe(32)
        pair = self.tokens.issue_pair(admin.id, admin.role, session_id)
        now = int(self._clock())
        record = SessionRecord(
            admin_id=admin.id,
            username=admin.username,
            role=admin.role,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            created_at=now,
            last_activity=now,
        )
        ttl = self.session_ttl_seconds
        await self.store.set(session_key(session_id), record.to_json(), ttl)
        await self.store.set(token_index_key(pair.access_token), session_id, ttl)
        await self.rate_limiter.clear(username)

        logger.info("admin_login_succeeded", admin_id=admin.id, session_id=session_id)
        return LoginResult(
            redirect_url=self.dashboard_url,
            expires_in=pair.expires_in,
            session_id=session_id,
            set_cookie=session_cookie_header(
                pair.access_token, pair.refresh_token, pair.expires_in
            ),
        )

    async def _load_session(self, session_id: str) -> Optional[SessionRecord]:
        raw = await self.store.get(session_key(session_id))
        if raw is None:
            return None
        try:
            return SessionRecord.from_json(raw)
        except StoreError as exc:
            if exc.kind != StoreErrorKind.SERIALIZATION:
                raise
            logger.error("admin_session_corrupt", session_id=session_id)
            await self.store.delete(session_key(session_id))
            return None

    async def authenticate_cookie(self, cookie_value: Optional[str]) -> Optional[AdminClaims]:
        """Claims for a valid session cookie, or None when the caller must log in.

        A live session has its ``last_activity`` stamped and both its record
        and reverse index re-armed to the full session lifetime. Store
        outages propagate as :class:`StoreError`.
        """
        access_token = access_token_from_cookie(cookie_value)
        if access_token is None:
            return None
        try:
            claims = self.tokens.verify(access_token, expected_type=ACCESS_TOKEN)
        except InvalidTokenError as exc:
            logger.info("admin_token_rejected", reason=exc.message)
            return None

        record = await self._load_session(claims.session_id)
        if record is None:
            logger.info("admin_session_missing", session_id=claims.session_id)
            return None
        if not hmac.compare_digest(
            record.access_token.encode("utf-8"), access_token.encode("utf-8")
        ):
            logger.warning("admin_session_token_mismatch", session_id=claims.session_id)
            return None

        ttl = self.session_ttl_seconds
        touched = record.touched(int(self._clock()))
        # Rewrite only a record that still exists so a concurrent logout stays final
        if not await self.store.replace(session_key(claims.session_id), touched.to_json(), ttl):
            logger.info("admin_session_revoked_during_check", session_id=claims.session_id)
            return None
        await self.store.expire(token_index_key(access_token), ttl)
        return claims

    async def logout(self, cookie_value: Optional[str]) -> None:
        """Drop the server-side session named by the cookie, if any.

        Never raises: a stale token or a store failure still ends with the
        client being told to clear its cookie.
        """
        access_token = access_token_from_cookie(cookie_value)
        if access_token is None:
            return
        session_id = self.tokens.recover_session_id(access_token)
        try:
            if session_id is None:
                session_id = await self.store.get(token_index_key(access_token))
            keys = [token_index_key(access_token)]
            if is_valid_session_id(session_id):
                keys.append(session_key(session_id))
            await self.store.delete(*keys)
        except StoreError as exc:
            logger.error("admin_logout_store_failed", kind=exc.kind.value, error=exc.message)
            return
        logger.info("admin_logout", session_id=session_id)
