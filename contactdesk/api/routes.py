from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Body, Cookie, Depends, Header, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse

from contactdesk.api.schemas import (
    AdminSessionResponse,
    CsrfTokenResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
)
from contactdesk.logging import get_logger
from contactdesk.service.auth import (
    BROWSER_SESSION_COOKIE_NAME,
    CSRF_HEADER_NAME,
    LOGIN_PATH,
    NO_STORE_CACHE_CONTROL,
    SESSION_COOKIE_NAME,
    browser_session_cookie_header,
    cleared_session_cookie_header,
    new_browser_session_id,
)
from contactdesk.service.csrf import is_valid_session_id
from contactdesk.service.errors import AuthenticationError
from contactdesk.service.runtime import get_runtime
from contactdesk.storage.errors import StoreError
from contactdesk.storage.models import AdminClaims

logger = get_logger(__name__)

router = APIRouter(tags=["admin"])
api_router = APIRouter(prefix="/api/v1", tags=["api"])

TEMPLATES_DIR = Path(__file__).resolve().parent.parent.parent / "templates"
HEALTH_CHECK_TIMEOUT_SECONDS = 3


def get_admin_claims(request: Request) -> AdminClaims:
    """Claims attached by the admin guard middleware."""
    claims = getattr(request.state, "admin_claims", None)
    if claims is None:
        raise AuthenticationError("admin session required")
    return claims


def _template_response(name: str) -> FileResponse:
    page = TEMPLATES_DIR / name
    if not page.exists():
        logger.warning("template_missing", template=str(page))
        raise HTTPException(status_code=404, detail="page not found")
    return FileResponse(page, headers={"Cache-Control": NO_STORE_CACHE_CONTROL})


@router.get("/admin/login", response_class=FileResponse)
async def login_page(request: Request) -> FileResponse:
    """Serve the login form and make sure the browser holds a ``session_id``.

    The CSRF token fetched by the form is bound to that identifier.
    """
    response = _template_response("admin_login.html")
    if not is_valid_session_id(request.cookies.get(BROWSER_SESSION_COOKIE_NAME)):
        response.headers.append("Set-Cookie", browser_session_cookie_header(new_browser_session_id()))
    return response


@router.post("/admin/login", response_model=LoginResponse)
async def login(
    body: Optional[LoginRequest] = Body(default=None),
    csrf_token: Optional[str] = Header(default=None, alias=CSRF_HEADER_NAME),
    session_id: Optional[str] = Cookie(default=None, alias=BROWSER_SESSION_COOKIE_NAME),
):
    """Authenticate the admin.

    Raises:
        400: If username or password is empty
        401: If the CSRF token or the credentials are rejected
        429: If too many failed attempts were recorded for this username
    """
    body = body or LoginRequest()
    runtime = get_runtime()
    result = await runtime.auth.login(
        body.username,
        body.password,
        csrf_token=csrf_token,
        browser_session_id=session_id,
    )
    payload = LoginResponse(redirect_url=result.redirect_url, expires_in=result.expires_in)
    return JSONResponse(
        content=payload.model_dump(by_alias=True),
        headers={
            "Set-Cookie": result.set_cookie,
            "Cache-Control": NO_STORE_CACHE_CONTROL,
        },
    )


@router.get("/admin/logout")
async def logout(request: Request) -> RedirectResponse:
    runtime = get_runtime()
    await runtime.auth.logout(request.cookies.get(SESSION_COOKIE_NAME))
    response = RedirectResponse(LOGIN_PATH, status_code=303)
    response.headers.append("Set-Cookie", cleared_session_cookie_header())
    response.headers["Cache-Control"] = NO_STORE_CACHE_CONTROL
    return response


@router.get(
    "/admin/dashboard",
    response_class=FileResponse,
    dependencies=[Depends(get_admin_claims)],
)
async def dashboard_page() -> FileResponse:
    return _template_response("admin_dashboard.html")


@router.get("/admin/session", response_model=AdminSessionResponse)
async def current_session(claims: AdminClaims = Depends(get_admin_claims)):
    return AdminSessionResponse(
        admin_id=claims.subject,
        role=claims.role,
        session_id=claims.session_id,
        expires_at=claims.expires_at,
    )


@api_router.get("/csrf-token", response_model=CsrfTokenResponse)
async def csrf_token(
    session_id: Optional[str] = Cookie(default=None, alias=BROWSER_SESSION_COOKIE_NAME),
):
    """Issue a single-use CSRF token bound to the caller's ``session_id`` cookie."""
    if not session_id:
        raise AuthenticationError("No session found")
    runtime = get_runtime()
    token, expires_in = await runtime.csrf.create_token(session_id)
    payload = CsrfTokenResponse(token=token, expires_in=expires_in)
    return JSONResponse(
        content=payload.model_dump(by_alias=True),
        headers={"Cache-Control": NO_STORE_CACHE_CONTROL},
    )


@router.get("/healthz", response_model=HealthResponse)
async def health():
    """Report whether the key-value store answers within a short deadline."""
    runtime = get_runtime()
    store_type = "memory" if runtime.settings.use_memory_store else "redis"
    try:
        await asyncio.wait_for(
            asyncio.to_thread(runtime.store.verify_connection), HEALTH_CHECK_TIMEOUT_SECONDS
        )
        store_ok = True
    except asyncio.TimeoutError:
        logger.error("health_check_timeout", component=store_type, timeout=HEALTH_CHECK_TIMEOUT_SECONDS)
        store_ok = False
    except StoreError as exc:
        logger.error("health_check_store_failed", component=store_type, kind=exc.kind.value)
        store_ok = False
    status = "healthy" if store_ok else "unhealthy"
    return JSONResponse(
        status_code=200 if store_ok else 503,
        content=HealthResponse(
            status=status, checks={"store": {"status": status, "type": store_type}}
        ).model_dump(),
    )
