from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

from contactdesk.api.error_handling import (
    error_response,
    register_exception_handlers,
    store_error_response,
)
from contactdesk.api.routes import api_router, router
from contactdesk.config import get_settings
from contactdesk.logging import get_logger, set_correlation_id
from contactdesk.service.auth import LOGIN_PATH, SESSION_COOKIE_NAME
from contactdesk.service.errors import ServiceError
from contactdesk.service.runtime import get_runtime
from contactdesk.storage.errors import StoreError

logger = get_logger(__name__)

__version__ = "0.1.0"

# Reachable without an admin session
_PUBLIC_ADMIN_PATHS = frozenset({"/admin/login", "/admin/logout"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    try:
        get_runtime()
    except Exception as exc:
        logger.error("startup_runtime_init_failed", error_type=type(exc).__name__, error=str(exc))

    yield

    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Contact Desk", version=__version__, lifespan=lifespan)


def _is_guarded(path: str) -> bool:
    if path not in ("/admin", "/admin/") and not path.startswith("/admin/"):
        return False
    return path.rstrip("/") not in _PUBLIC_ADMIN_PATHS


@app.middleware("http")
async def admin_guard(request: Request, call_next):
    """Let only requests with a live admin session reach ``/admin`` pages.

    Failures are navigational: the browser is sent back to the login page.
    A store outage is not an authentication failure and renders a 500.
    """
    if not _is_guarded(request.url.path):
        return await call_next(request)
    try:
        runtime = get_runtime()
        claims = await runtime.auth.authenticate_cookie(request.cookies.get(SESSION_COOKIE_NAME))
    except StoreError as exc:
        return store_error_response(request, exc)
    except ServiceError as exc:
        logger.error("admin_guard_failed", error_code=exc.error_code, message=exc.message)
        return error_response(exc.status_code, exc.message, code=exc.error_code)
    if claims is None:
        logger.info("admin_guard_redirect", path=request.url.path)
        return RedirectResponse(LOGIN_PATH, status_code=303)
    request.state.admin_claims = claims
    return await call_next(request)


@app.middleware("http")
async def enforce_request_timeout(request: Request, call_next):
    timeout = get_settings().request_timeout_seconds
    try:
        return await asyncio.wait_for(call_next(request), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("request_timeout", path=request.url.path, timeout=timeout)
        return error_response(408, "request timed out", code="request_timeout")


@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    """Tag each request with a correlation ID.

    The ID comes from the X-Request-ID header when the client sends one and
    is generated otherwise. It is attached to every log entry and echoed in
    the X-Request-ID response header.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)
app.include_router(api_router)


def create_app() -> FastAPI:
    return app
