"""
auth/tokens.py -- Password hashing, access tokens, opaque tokens, cookies.

Security design decisions:
  Access tokens: python-jose with HS256. Tokens are signed with SECRET_KEY
       and carry sub (email), user_id, role, type and expiry. They are
       stateless and trusted until expiry -- there is no revocation list, so
       the TTL is kept short (minutes). Verification raises AuthError with
       TOKEN_EXPIRED or INVALID_TOKEN; callers never inspect jose exceptions.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

  Opaque tokens: secrets.token_urlsafe(48) -- 384 bits from the OS CSPRNG,
       64 url-safe characters. Refresh and reset tokens are looked up by exact
       value, so they carry no decodable payload.

  Refresh cookie: HttpOnly, SameSite=strict, path-scoped to the auth routes,
       Secure unless SECURE_COOKIES=false (local http only).

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import AuthError, AuthErrorKind
from auth.models import Principal
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("sessiongate.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"
_BCRYPT_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def _bcrypt_input(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes and current releases refuse longer
    input, so the encoded password is cut to 72 bytes before hashing.
    """
    return bcrypt.hashpw(_bcrypt_input(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_bcrypt_input(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash: treat as a mismatch, never as a match.
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("sessiongate_timing_dummy")


# ---------------------------------------------------------------------------
# Access tokens (JWT)
# ---------------------------------------------------------------------------


def create_access_token(principal: Principal, expire_seconds: int = 0) -> str:
    """Encode a signed, short-lived JWT for the given principal.

    Args:
        principal:      Identity to encode (id, email, role).
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.access_token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": principal.email,
        "user_id": principal.id,
        "role": principal.role,
        "type": _ACCESS_TYPE,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def verify_access_token(token: str) -> Principal:
    """Decode and verify an access token, returning the Principal it encodes.

    Raises:
        AuthError(TOKEN_EXPIRED): signature is valid but exp has passed.
        AuthError(INVALID_TOKEN): anything else -- malformed, bad signature,
            wrong token type, or missing claims.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise AuthError(AuthErrorKind.TOKEN_EXPIRED) from exc
    except JWTError as exc:
        raise AuthError(AuthErrorKind.INVALID_TOKEN, reason="undecodable") from exc

    if payload.get("type") != _ACCESS_TYPE:
        raise AuthError(AuthErrorKind.INVALID_TOKEN, reason="wrong_type")
    try:
        return Principal(id=int(payload["user_id"]), email=str(payload["sub"]), role=str(payload["role"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise AuthError(AuthErrorKind.INVALID_TOKEN, reason="missing_claims") from exc


# ---------------------------------------------------------------------------
# Credential authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> Principal:
    """Verify an email/password pair and return the matching Principal.

    Always runs bcrypt whether or not the user exists, so an attacker cannot
    enumerate registered emails by timing:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    A disabled account is reported as USER_DISABLED only after the password
    has been verified; without the password it looks like any other failure.
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, reason="unknown_email")
    if not verify_password(password, user.hashed_password):
        raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, reason="bad_password")
    if not user.is_active:
        raise AuthError(AuthErrorKind.USER_DISABLED)
    return Principal.from_user(user)


# ---------------------------------------------------------------------------
# Opaque token generation
# ---------------------------------------------------------------------------


def generate_opaque_token() -> str:
    """Return a new random token value (64 url-safe chars, 384 bits of entropy)."""
    return secrets.token_urlsafe(48)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str) -> None:
    """Write the refresh token as an HttpOnly cookie on the response.

    max_age matches the refresh-token lifetime so the browser drops the
    cookie at about the time the server would reject it anyway.
    """
    response.set_cookie(
        _settings.refresh_cookie_name,
        value=token,
        httponly=True,
        samesite="strict",
        secure=_settings.secure_cookies,
        path=_settings.refresh_cookie_path,
        max_age=_settings.refresh_token_expire_seconds,
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(
        _settings.refresh_cookie_name,
        path=_settings.refresh_cookie_path,
        httponly=True,
        samesite="strict",
        secure=_settings.secure_cookies,
    )
