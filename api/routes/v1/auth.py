"""
api/routes/v1/auth.py -- Authentication and session management REST endpoints.

Routes:
  POST /api/v1/auth/register                -- create account; sets refresh cookie
  POST /api/v1/auth/login                   -- password login; sets refresh cookie
  POST /api/v1/auth/refresh                 -- rotate refresh cookie, new access token
  POST /api/v1/auth/logout                  -- revoke this device's refresh token; 204
  POST /api/v1/auth/logout-all              -- revoke every refresh token of the caller; 204
  POST /api/v1/auth/forgot-password         -- email a reset link; always 204
  POST /api/v1/auth/reset-password          -- consume reset token, set password; 204
  GET  /api/v1/auth/me                      -- current user (requires access token)
  GET  /api/v1/auth/sessions                -- caller's sessions (requires access token)
  POST /api/v1/auth/sessions/{id}/revoke    -- revoke one session (ownership checked)

Security:
  Refresh tokens travel only in the HttpOnly cookie, never in a JSON body.
  Cache-Control: no-store on every response that carries a token.
  forgot-password answers 204 whether or not the email is registered.
  AuthError raised by the service is rendered by the handler in api/main.py.

All handlers are plain `def`: store calls block, so FastAPI runs them in its
threadpool instead of on the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SessionResponse,
    SessionsResponse,
    UserResponse,
)
from auth.dependencies import get_current_user
from auth.errors import AuthError, AuthErrorKind
from auth.models import User
from auth.service import AuthResult, AuthService
from auth.sessions import SessionRegistry
from auth.tokens import clear_refresh_cookie, set_refresh_cookie
from core.config import get_settings

# Auth policy:
# - POST /auth/register, /auth/login, /auth/forgot-password, /auth/reset-password: public
# - POST /auth/refresh, /auth/logout: refresh cookie only (no access token needed)
# - GET  /auth/me, /auth/sessions, POST /auth/logout-all,
#   POST /auth/sessions/{id}/revoke: access token (get_current_user)
router = APIRouter()

_settings = get_settings()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _sessions(request: Request) -> SessionRegistry:
    return request.app.state.session_registry


def _device_info(request: Request) -> str:
    return request.headers.get("User-Agent", "")[:512] or "unknown"


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _refresh_cookie(request: Request) -> str | None:
    return request.cookies.get(_settings.refresh_cookie_name)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and sign it in. 409 if the email is taken."""
    result = _service(request).register(body.email, body.password, body.name, _device_info(request))
    return _auth_response(result, status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Wrong email and wrong password produce the same 401 body so the endpoint
    does not reveal which accounts exist.
    """
    result = _service(request).login(body.email, body.password, _device_info(request))
    return _auth_response(result, status_code=200)


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request) -> JSONResponse:
    """Rotate the refresh cookie and return a new access token.

    Works with an expired (or absent) access token: the caller is identified
    from the refresh token record alone.
    """
    token_value = _refresh_cookie(request)
    if not token_value:
        raise AuthError(AuthErrorKind.INVALID_TOKEN, "Refresh token cookie is missing.")
    result = _service(request).refresh(token_value, _device_info(request))
    resp = JSONResponse(
        status_code=200,
        content=RefreshResponse(
            access_token=result.access_token,
            expires_in=_settings.access_token_expire_seconds,
            user_email=result.user_email,
        ).model_dump(),
    )
    set_refresh_cookie(resp, result.refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", status_code=204)
def logout(request: Request) -> Response:
    """Revoke this device's refresh token and clear the cookie. Always 204."""
    _service(request).logout(_refresh_cookie(request))
    resp = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(resp)
    return resp


@router.post("/auth/forgot-password", status_code=204)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> Response:
    """Send a reset link if the email is registered. Same 204 either way."""
    _service(request).send_reset_password_link(body.email, _client_ip(request))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/auth/reset-password", status_code=204)
def reset_password(request: Request, body: ResetPasswordRequest) -> Response:
    """Set a new password with a reset token. Every session of the account is revoked."""
    _service(request).reset_password(body.token, body.new_password)
    resp = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return _user_to_response(current_user)


@router.post("/auth/logout-all", status_code=204)
def logout_all(request: Request, current_user: User = Depends(get_current_user)) -> Response:
    """Revoke every refresh token of the caller ("log out everywhere")."""
    _service(request).logout_all(current_user.id)
    resp = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(resp)
    return resp


@router.get("/auth/sessions", response_model=SessionsResponse)
def list_sessions(request: Request, current_user: User = Depends(get_current_user)) -> SessionsResponse:
    """List the caller's sessions, flagging the one this request came from."""
    registry = _sessions(request)
    sessions = registry.list(current_user.id)
    return SessionsResponse(
        sessions=[
            SessionResponse(id=s.id, device_info=s.device_info, expiry=s.expiry, revoked=s.revoked) for s in sessions
        ],
        current_session_id=registry.current_session_id(current_user.id, _refresh_cookie(request)),
    )


@router.post("/auth/sessions/{session_id}/revoke", status_code=204)
def revoke_session(
    request: Request,
    session_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Revoke one session. 404 if unknown, 403 if it belongs to another user."""
    _sessions(request).revoke(session_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, email=user.email, name=user.name, role=user.role)


def _auth_response(result: AuthResult, status_code: int) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            access_token=result.access_token,
            expires_in=_settings.access_token_expire_seconds,
            user=_user_to_response(result.user),
        ).model_dump(),
    )
    set_refresh_cookie(resp, result.refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp
