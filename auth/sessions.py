"""
auth/sessions.py -- Per-user session listing and revocation.

A session is a view over one refresh token; nothing here is stored. revoke()
is the one place in the auth core that checks a resource's owner against the
caller's identity.
"""

from __future__ import annotations

import logging

from auth.errors import AuthError, AuthErrorKind
from auth.models import Session
from auth.refresh_tokens import RefreshTokenStore

logger = logging.getLogger("sessiongate.auth.sessions")


class SessionRegistry:
    def __init__(self, refresh_tokens: RefreshTokenStore) -> None:
        self.refresh_tokens = refresh_tokens

    def list(self, user_id: int) -> list[Session]:
        return [Session.from_refresh_token(t) for t in self.refresh_tokens.list_for_user(user_id)]

    def revoke(self, session_id: int, requesting_user_id: int) -> None:
        """Revoke one of the caller's sessions.

        Raises:
            AuthError(NOT_FOUND): no session has this id.
            AuthError(FORBIDDEN): the session belongs to another user.
        """
        token = self.refresh_tokens.get_by_id(session_id)
        if token is None:
            raise AuthError(AuthErrorKind.NOT_FOUND, "Session not found.")
        if token.user_id != requesting_user_id:
            logger.warning(
                "Session revoke denied (session_id=%s owner=%s requester=%s)",
                session_id,
                token.user_id,
                requesting_user_id,
            )
            raise AuthError(AuthErrorKind.FORBIDDEN)
        self.refresh_tokens.revoke_by_id(session_id)
        logger.info("Session revoked (session_id=%s user_id=%s)", session_id, requesting_user_id)

    def current_session_id(self, user_id: int, refresh_token_value: str | None) -> int | None:
        """Return the id of the caller's own session, if their cookie names one of theirs."""
        if not refresh_token_value:
            return None
        token = self.refresh_tokens.get_by_value(refresh_token_value)
        if token is None or token.user_id != user_id:
            return None
        return token.id
