"""
api/main.py -- FastAPI application entry point for SessionGate.

Exposes the auth engine over HTTP: account registration, password login,
refresh-token rotation, logout, password reset and session management.

Install deps:  pip install -e .
Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins;
                              credentials allowed so the refresh cookie flows

Lifespan handles startup (engine, stores, auth service, purge task) and
shutdown (cancel purge task, dispose engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.db import create_auth_engine
from auth.dependencies import get_current_user
from auth.errors import AuthError, AuthErrorKind
from auth.mailer import SmtpEmailSender
from auth.models import User
from auth.refresh_tokens import RefreshTokenStore
from auth.reset_tokens import PasswordResetTokenStore
from auth.service import AuthService
from auth.sessions import SessionRegistry
from auth.store import UserStore
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("sessiongate.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired refresh and reset tokens every purge_interval_seconds.

    The deletes run in a worker thread so the SQLite write lock is never
    waited on from the event loop. A failed sweep is logged and retried on
    the next tick. CancelledError from task.cancel() during shutdown is not
    an Exception subclass and still unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(settings.purge_interval_seconds)
        try:
            refresh_purged = await asyncio.to_thread(app.state.refresh_tokens.delete_expired)
            reset_purged = await asyncio.to_thread(app.state.reset_tokens.delete_expired)
        except Exception:
            logger.exception("Expired-token purge failed; retrying in %ds", settings.purge_interval_seconds)
            continue
        if refresh_purged or reset_purged:
            logger.info("Purged expired tokens (refresh=%d reset=%d)", refresh_purged, reset_purged)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the stores and the auth service, then start the purge task.

    All stores share one Engine. The purge task starts last because it
    references the stores on app.state.
    """
    logger.info("SessionGate API starting up")
    engine = create_auth_engine(settings.database_url)
    app.state.user_store = UserStore(engine)
    app.state.refresh_tokens = RefreshTokenStore(engine, ttl_seconds=settings.refresh_token_expire_seconds)
    app.state.reset_tokens = PasswordResetTokenStore(engine, ttl_seconds=settings.reset_token_expire_seconds)
    app.state.session_registry = SessionRegistry(app.state.refresh_tokens)
    app.state.email_sender = SmtpEmailSender.from_settings(settings)
    app.state.auth_service = AuthService(
        users=app.state.user_store,
        refresh_tokens=app.state.refresh_tokens,
        reset_tokens=app.state.reset_tokens,
        email_sender=app.state.email_sender,
        reset_link_base=settings.reset_link_base,
    )
    if not app.state.email_sender.is_configured:
        logger.warning("SMTP not configured -- password reset emails will be logged, not sent")
    logger.info("Auth initialized (has_users=%s)", app.state.user_store.has_users())
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("SessionGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SessionGate API",
    description="Credential auth, refresh-token rotation, password reset and session management.",
    version=__version__,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below with authenticated routes.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="SessionGate API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="SessionGate API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_STATUS_BY_KIND: dict[AuthErrorKind, int] = {
    AuthErrorKind.INVALID_CREDENTIALS: 401,
    AuthErrorKind.ACCOUNT_ALREADY_EXISTS: 409,
    AuthErrorKind.INVALID_TOKEN: 401,
    AuthErrorKind.TOKEN_EXPIRED: 401,
    AuthErrorKind.TOKEN_REVOKED: 401,
    AuthErrorKind.INVALID_RESET_TOKEN: 400,
    AuthErrorKind.FORBIDDEN: 403,
    AuthErrorKind.NOT_FOUND: 404,
    AuthErrorKind.USER_DISABLED: 403,
}


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map an AuthError kind to its HTTP status.

    exc.reason is diagnostic only and never reaches the response body: for
    reset tokens in particular, "expired" and "already used" must look the
    same to the client.
    """
    status_code = _STATUS_BY_KIND.get(exc.kind, 400)
    response = JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.kind.value, message=exc.message)).model_dump(),
    )
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for HTTPException raised by dependencies.

    When detail is already a structured dict (as get_current_user raises it),
    use it directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
