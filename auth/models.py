"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero persistence logic). Stores
own the SQL; dataclasses own domain shape. Token records are frozen: a
revocation or consumption is a store operation that produces a new row
state, never an in-place mutation of an object someone else may hold.

Tokens reference their owner by user_id only. The owning User is resolved
through UserStore on every call that needs it, so a token never carries a
stale copy of the account.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """An account in the user directory.

    email is stored lower-cased and is unique. hashed_password is a bcrypt
    hash and must never leave the auth package (see Principal).
    """

    email: str
    hashed_password: str
    role: str = "user"  # "user", "admin"
    name: str | None = None
    id: int | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Principal:
    """The authenticated identity carried by an access token."""

    id: int
    email: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(id=user.id, email=user.email, role=user.role)


@dataclass(frozen=True)
class RefreshToken:
    """A long-lived, opaque, revocable credential for one device."""

    token: str
    user_id: int
    device_info: str
    expiry: datetime
    revoked: bool = False
    id: int | None = None
    created_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return not self.revoked and now < self.expiry


@dataclass(frozen=True)
class PasswordResetToken:
    """A single-use, short-lived credential authorizing one password change.

    request_ip is recorded for audit only and never drives control flow.
    """

    token: str
    user_id: int
    expiry: datetime
    used: bool = False
    used_at: datetime | None = None
    request_ip: str | None = None
    id: int | None = None
    created_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return not self.used and now < self.expiry


@dataclass(frozen=True)
class Session:
    """User-facing view of one refresh token. Computed, never stored."""

    id: int
    device_info: str
    expiry: datetime
    revoked: bool

    @classmethod
    def from_refresh_token(cls, token: RefreshToken) -> "Session":
        return cls(id=token.id, device_info=token.device_info, expiry=token.expiry, revoked=token.revoked)
