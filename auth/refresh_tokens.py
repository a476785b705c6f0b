"""
auth/refresh_tokens.py -- Persistence and lifecycle for refresh tokens.

A refresh token row is Active iff revoked == 0 and now < expiry. The revoked
flag is monotonic: every UPDATE in this module sets it to 1, none clears it.

Rotation is the only multi-step write. It runs inside one transaction and
starts with a conditional UPDATE (revoked 0 -> 1 on an unexpired row). Only
the caller whose UPDATE changed exactly one row goes on to insert the
replacement, so two concurrent refreshes presenting the same token cannot
both mint a successor. The loser gets TOKEN_REVOKED.

The conditional UPDATE is issued before any SELECT in that transaction. On
SQLite this acquires the write lock up front instead of upgrading a read
snapshot, which would fail with "database is locked" under contention.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.engine import Connection, Engine

from auth.db import from_db_time, refresh_tokens, to_db_time, utcnow
from auth.errors import AuthError, AuthErrorKind
from auth.models import RefreshToken
from auth.tokens import generate_opaque_token

logger = logging.getLogger("sessiongate.auth.refresh")

DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60


class RefreshTokenStore:
    """Repository for RefreshToken records.

    Usage:
        store = RefreshTokenStore(engine, ttl_seconds=settings.refresh_token_expire_seconds)
        token = store.create(user.id, "Mozilla/5.0 ...")
        successor = store.rotate(token.token, "Mozilla/5.0 ...")
    """

    def __init__(
        self,
        engine: Engine,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def create(self, user_id: int, device_info: str) -> RefreshToken:
        """Persist and return a fresh Active token for user_id."""
        with self.engine.begin() as conn:
            return self._insert(conn, user_id, device_info, self._clock())

    def validate(self, token_value: str) -> RefreshToken:
        """Return the record for token_value if it is Active.

        Raises:
            AuthError(INVALID_TOKEN): no record has this value.
            AuthError(TOKEN_REVOKED): the record was revoked.
            AuthError(TOKEN_EXPIRED): the record is past its expiry.
        """
        record = self.get_by_value(token_value)
        if record is None:
            raise AuthError(AuthErrorKind.INVALID_TOKEN, "Refresh token not found.")
        self._raise_if_inactive(record, self._clock())
        return record

    def get_by_value(self, token_value: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(refresh_tokens.select().where(refresh_tokens.c.token == token_value)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def get_by_id(self, token_id: int) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(refresh_tokens.select().where(refresh_tokens.c.id == token_id)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_for_user(self, user_id: int) -> list[RefreshToken]:
        """Every token owned by user_id, Active or not, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                refresh_tokens.select().where(refresh_tokens.c.user_id == user_id).order_by(refresh_tokens.c.id)
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(self, token_value: str) -> bool:
        """Revoke a token by value. Idempotent: unknown or already-revoked is a no-op.

        Returns True only if this call flipped the flag.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                refresh_tokens.update()
                .where((refresh_tokens.c.token == token_value) & (refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount > 0

    def revoke_by_id(self, token_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                refresh_tokens.update()
                .where((refresh_tokens.c.id == token_id) & (refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount > 0

    def revoke_all(self, user_id: int) -> int:
        """Revoke every token owned by user_id ("log out everywhere").

        Rows are flagged rather than deleted so a previously issued token keeps
        failing with TOKEN_REVOKED instead of degrading to INVALID_TOKEN.
        Returns the number of tokens this call revoked.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                refresh_tokens.update()
                .where((refresh_tokens.c.user_id == user_id) & (refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def rotate(self, token_value: str, device_info: str | None = None) -> RefreshToken:
        """Revoke token_value and issue its replacement in one transaction.

        The replacement belongs to the same user. device_info defaults to the
        presented token's device when the caller has none.

        Raises the same AuthError kinds as validate(). A token that was Active
        a moment ago but lost a concurrent rotation raises TOKEN_REVOKED.
        """
        now = self._clock()
        with self.engine.begin() as conn:
            claimed = conn.execute(
                refresh_tokens.update()
                .where(
                    (refresh_tokens.c.token == token_value)
                    & (refresh_tokens.c.revoked == 0)
                    & (refresh_tokens.c.expiry > to_db_time(now))
                )
                .values(revoked=1)
            )
            row = conn.execute(refresh_tokens.select().where(refresh_tokens.c.token == token_value)).fetchone()
            if row is None:
                raise AuthError(AuthErrorKind.INVALID_TOKEN, "Refresh token not found.")
            old = _row_to_refresh_token(row)
            if claimed.rowcount != 1:
                if old.revoked and now < old.expiry:
                    logger.warning("Refresh token reuse rejected (token_id=%s user_id=%s)", old.id, old.user_id)
                self._raise_if_inactive(old, now)
                # Unreachable unless the row changed between UPDATE and SELECT
                # inside our own transaction.
                raise AuthError(AuthErrorKind.TOKEN_REVOKED)
            successor = self._insert(conn, old.user_id, device_info or old.device_info, now)
        logger.info("Refresh token rotated (user_id=%s old_id=%s new_id=%s)", old.user_id, old.id, successor.id)
        return successor

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def delete_expired(self) -> int:
        """Delete rows past their expiry. Returns the number of rows removed.

        Expired rows already fail validate(), so this never changes what a
        request observes -- it only bounds table growth.
        """
        with self.engine.begin() as conn:
            result = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.expiry <= to_db_time(self._clock())))
        return result.rowcount

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _insert(self, conn: Connection, user_id: int, device_info: str, now: datetime) -> RefreshToken:
        value = generate_opaque_token()
        expiry = now + self.ttl
        result = conn.execute(
            refresh_tokens.insert().values(
                token=value,
                user_id=user_id,
                device_info=device_info or "unknown",
                expiry=to_db_time(expiry),
                revoked=0,
                created_at=to_db_time(now),
            )
        )
        return RefreshToken(
            id=result.inserted_primary_key[0],
            token=value,
            user_id=user_id,
            device_info=device_info or "unknown",
            expiry=expiry,
            revoked=False,
            created_at=now,
        )

    @staticmethod
    def _raise_if_inactive(record: RefreshToken, now: datetime) -> None:
        if record.revoked:
            raise AuthError(AuthErrorKind.TOKEN_REVOKED)
        if now >= record.expiry:
            raise AuthError(AuthErrorKind.TOKEN_EXPIRED)


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        device_info=row.device_info,
        expiry=from_db_time(row.expiry),
        revoked=bool(row.revoked),
        created_at=from_db_time(row.created_at),
    )
