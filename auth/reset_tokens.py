"""
auth/reset_tokens.py -- Persistence and lifecycle for password reset tokens.

A reset token is Active iff used == 0 and now < expiry, and a user has at
most one Active token at a time: create() marks every earlier Active token
used (a forced supersede, not an error) in the same transaction that inserts
the new one.

Failures are collapsed into one client-facing kind, INVALID_RESET_TOKEN, so
a caller holding a guessed or stale value learns nothing about why it was
rejected. The AuthError.reason field keeps not_found / used / expired apart
for the logs.

Deletion of expired rows is a housekeeping job (delete_expired) that runs on
a timer outside the request path. validate() already rejects expired rows,
so the sweep never changes request-visible behaviour.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.engine import Engine

from auth.db import from_db_time, password_reset_tokens, to_db_time, utcnow
from auth.errors import AuthError, AuthErrorKind
from auth.models import PasswordResetToken
from auth.tokens import generate_opaque_token

logger = logging.getLogger("sessiongate.auth.reset")

DEFAULT_TTL_SECONDS = 15 * 60


class PasswordResetTokenStore:
    """Repository for PasswordResetToken records."""

    def __init__(
        self,
        engine: Engine,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def create(self, user_id: int, request_ip: str | None) -> PasswordResetToken:
        """Supersede the user's Active tokens and issue a new one.

        The supersede UPDATE runs first in the transaction, so on SQLite the
        write lock is held before the INSERT and two concurrent requests for
        the same user serialize: the second one supersedes the first one's
        token instead of leaving two Active tokens behind.
        """
        now = self._clock()
        now_db = to_db_time(now)
        value = generate_opaque_token()
        expiry = now + self.ttl
        with self.engine.begin() as conn:
            superseded = conn.execute(
                password_reset_tokens.update()
                .where(
                    (password_reset_tokens.c.user_id == user_id)
                    & (password_reset_tokens.c.used == 0)
                    & (password_reset_tokens.c.expiry > now_db)
                )
                .values(used=1, used_at=now_db)
            )
            result = conn.execute(
                password_reset_tokens.insert().values(
                    token=value,
                    user_id=user_id,
                    expiry=to_db_time(expiry),
                    used=0,
                    request_ip=request_ip,
                    created_at=now_db,
                )
            )
        if superseded.rowcount:
            logger.info("Superseded %d active reset token(s) for user_id=%s", superseded.rowcount, user_id)
        return PasswordResetToken(
            id=result.inserted_primary_key[0],
            token=value,
            user_id=user_id,
            expiry=expiry,
            used=False,
            request_ip=request_ip,
            created_at=now,
        )

    def validate(self, token_value: str) -> PasswordResetToken:
        """Return the record for token_value if it is Active.

        Raises AuthError(INVALID_RESET_TOKEN) when the value is unknown, was
        already used, or has expired.
        """
        record = self.get_by_value(token_value)
        if record is None:
            raise AuthError(AuthErrorKind.INVALID_RESET_TOKEN, reason="not_found")
        if record.used:
            raise AuthError(AuthErrorKind.INVALID_RESET_TOKEN, "Reset token has already been used.", reason="used")
        if self._clock() >= record.expiry:
            raise AuthError(AuthErrorKind.INVALID_RESET_TOKEN, "Reset token is expired.", reason="expired")
        return record

    def mark_used(self, token: PasswordResetToken) -> PasswordResetToken:
        """Consume token. Must be called exactly once per successful reset.

        The UPDATE only matches a row that is still Active, so of two
        concurrent resets presenting the same token exactly one gets through;
        the other raises INVALID_RESET_TOKEN.
        """
        now = self._clock()
        now_db = to_db_time(now)
        with self.engine.begin() as conn:
            result = conn.execute(
                password_reset_tokens.update()
                .where(
                    (password_reset_tokens.c.id == token.id)
                    & (password_reset_tokens.c.used == 0)
                    & (password_reset_tokens.c.expiry > now_db)
                )
                .values(used=1, used_at=now_db)
            )
        if result.rowcount != 1:
            raise AuthError(AuthErrorKind.INVALID_RESET_TOKEN, reason="consumed_concurrently")
        return PasswordResetToken(
            id=token.id,
            token=token.token,
            user_id=token.user_id,
            expiry=token.expiry,
            used=True,
            used_at=now,
            request_ip=token.request_ip,
            created_at=token.created_at,
        )

    def get_by_value(self, token_value: str) -> PasswordResetToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                password_reset_tokens.select().where(password_reset_tokens.c.token == token_value)
            ).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def list_for_user(self, user_id: int) -> list[PasswordResetToken]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                password_reset_tokens.select()
                .where(password_reset_tokens.c.user_id == user_id)
                .order_by(password_reset_tokens.c.id)
            ).fetchall()
        return [_row_to_reset_token(r) for r in rows]

    def delete_expired(self) -> int:
        """Delete every row whose expiry has passed. Returns rows removed.

        Never touches Active rows, so it is safe to run concurrently with
        normal traffic.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                password_reset_tokens.delete().where(password_reset_tokens.c.expiry <= to_db_time(self._clock()))
            )
        return result.rowcount


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        expiry=from_db_time(row.expiry),
        used=bool(row.used),
        used_at=from_db_time(row.used_at),
        request_ip=row.request_ip,
        created_at=from_db_time(row.created_at),
    )
