"""
auth/errors.py -- Error vocabulary for the auth/session core.

One exception type, one enumerated kind. Callers branch on exc.kind rather
than on an exception class hierarchy, and the HTTP layer maps each kind to a
status code in a single table (api/main.py).

Layer rule: no imports from api/. Pure stdlib.
"""

from __future__ import annotations

from enum import Enum


class AuthErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_ALREADY_EXISTS = "account_already_exists"
    INVALID_TOKEN = "invalid_token"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_REVOKED = "token_revoked"
    INVALID_RESET_TOKEN = "invalid_reset_token"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    USER_DISABLED = "user_disabled"


_DEFAULT_MESSAGES: dict[AuthErrorKind, str] = {
    AuthErrorKind.INVALID_CREDENTIALS: "Invalid email or password.",
    AuthErrorKind.ACCOUNT_ALREADY_EXISTS: "An account with that email already exists.",
    AuthErrorKind.INVALID_TOKEN: "The provided token is invalid.",
    AuthErrorKind.TOKEN_EXPIRED: "The provided token has expired.",
    AuthErrorKind.TOKEN_REVOKED: "The provided token has been revoked.",
    AuthErrorKind.INVALID_RESET_TOKEN: "Invalid or expired reset token.",
    AuthErrorKind.FORBIDDEN: "You do not have permission to perform this action.",
    AuthErrorKind.NOT_FOUND: "The requested resource does not exist.",
    AuthErrorKind.USER_DISABLED: "This account has been disabled.",
}


class AuthError(Exception):
    """A client-correctable auth failure.

    reason is an internal diagnostic (e.g. "used" vs "expired" for a reset
    token whose kind is collapsed to INVALID_RESET_TOKEN). It is logged, never
    sent to the client.
    """

    def __init__(self, kind: AuthErrorKind, message: str | None = None, *, reason: str | None = None) -> None:
        self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[kind]
        self.reason = reason
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"AuthError({self.kind.value!r}, reason={self.reason!r})"
