"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive in the Authorization: Bearer <token> header only. The
refresh token cookie is never accepted here: it is scoped to the refresh /
logout / sessions routes and read explicitly by them.

get_current_user() verifies the token, then resolves the account through
the user store so a disabled or deleted account stops working immediately
even while its access token is still within its TTL.

Layer rule: this module may import from fastapi because it is part of the
FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import AuthError
from auth.models import User
from auth.store import UserStore
from auth.tokens import verify_access_token


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_user(request: Request) -> User:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        principal = verify_access_token(token)
    except AuthError as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.kind.value, "message": exc.message},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(principal.id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
