"""
auth/service.py -- Auth flow orchestration.

AuthService composes the credential check, the access-token issuer and the
two token stores into the register / login / refresh / logout /
forgot-password / reset-password flows. It holds no per-request state: every
flow reads and writes through the stores, so one instance serves all
requests concurrently.

Cookies are an HTTP concern. Flows that issue a refresh token return its
value in the result object and the route writes the cookie.

Error policy: store and authenticator failures propagate unchanged as
AuthError. The single exception is send_reset_password_link(), which turns
"no such email" into a silent success so the endpoint cannot be used to
discover registered accounts.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from auth.errors import AuthError, AuthErrorKind
from auth.mailer import EmailSender, redact_email
from auth.models import Principal, User
from auth.refresh_tokens import RefreshTokenStore
from auth.reset_tokens import PasswordResetTokenStore
from auth.store import UserStore, normalize_email
from auth.tokens import authenticate_user, create_access_token, hash_password

logger = logging.getLogger("sessiongate.auth.service")


@dataclass(frozen=True)
class AuthResult:
    access_token: str
    user: User
    refresh_token: str


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    user_email: str
    refresh_token: str


class AuthService:
    def __init__(
        self,
        users: UserStore,
        refresh_tokens: RefreshTokenStore,
        reset_tokens: PasswordResetTokenStore,
        email_sender: EmailSender,
        reset_link_base: str,
    ) -> None:
        self.users = users
        self.refresh_tokens = refresh_tokens
        self.reset_tokens = reset_tokens
        self.email_sender = email_sender
        self.reset_link_base = reset_link_base

    # ------------------------------------------------------------------
    # Sign-in flows
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, name: str | None, device_info: str) -> AuthResult:
        """Create an account and sign it in on this device.

        The up-front lookup gives the common case a clean error; the UNIQUE
        constraint catches two registrations racing for the same email.
        """
        if self.users.get_by_email(email) is not None:
            raise AuthError(AuthErrorKind.ACCOUNT_ALREADY_EXISTS)
        try:
            user_id = self.users.create_user(
                User(email=normalize_email(email), name=name, hashed_password=hash_password(password), role="user")
            )
        except IntegrityError as exc:
            raise AuthError(AuthErrorKind.ACCOUNT_ALREADY_EXISTS) from exc

        user = self.users.get_by_id(user_id)
        logger.info("Registered user_id=%s email=%s", user_id, redact_email(user.email))
        return self._issue(user, device_info)

    def login(self, email: str, password: str, device_info: str) -> AuthResult:
        try:
            principal = authenticate_user(self.users, email, password)
        except AuthError as exc:
            logger.warning("Login failed email=%s kind=%s reason=%s", redact_email(email), exc.kind.value, exc.reason)
            raise
        user = self.users.get_by_id(principal.id)
        logger.info("Login succeeded user_id=%s", principal.id)
        return self._issue(user, device_info)

    def refresh(self, refresh_token_value: str, device_info: str) -> RefreshResult:
        """Exchange a refresh token for a new access token and a rotated refresh token.

        The user is resolved from the refresh-token record, never from an
        access token: refresh has to work after the access token expired.
        """
        record = self.refresh_tokens.validate(refresh_token_value)
        user = self.users.get_by_id(record.user_id)
        if user is None:
            raise AuthError(AuthErrorKind.INVALID_TOKEN, reason="orphaned")
        if not user.is_active:
            self.refresh_tokens.revoke(refresh_token_value)
            raise AuthError(AuthErrorKind.USER_DISABLED)

        successor = self.refresh_tokens.rotate(refresh_token_value, device_info)
        access_token = create_access_token(Principal.from_user(user))
        return RefreshResult(access_token=access_token, user_email=user.email, refresh_token=successor.token)

    def logout(self, refresh_token_value: str | None) -> None:
        """Revoke the presented refresh token. No-op if absent or already revoked."""
        if refresh_token_value and self.refresh_tokens.revoke(refresh_token_value):
            logger.info("Logged out one session")

    def logout_all(self, user_id: int) -> int:
        revoked = self.refresh_tokens.revoke_all(user_id)
        logger.info("Logged out everywhere user_id=%s sessions=%d", user_id, revoked)
        return revoked

    # ------------------------------------------------------------------
    # Password reset flows
    # ------------------------------------------------------------------

    def send_reset_password_link(self, email: str, request_ip: str | None) -> None:
        """Email a reset link if the account exists. Silent either way."""
        user = self.users.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email=%s", redact_email(email))
            return
        token = self.reset_tokens.create(user.id, request_ip)
        delivered = self.email_sender.send_password_reset(user.email, user.name, self.reset_link_base + token.token)
        logger.info("Password reset requested user_id=%s delivered=%s", user.id, delivered)

    def reset_password(self, reset_token_value: str, new_password: str) -> None:
        """Set a new password using a reset token, then sign out every device.

        The token is consumed before the hash is written, so two concurrent
        submissions of one token cannot both change the password.
        """
        try:
            token = self.reset_tokens.validate(reset_token_value)
        except AuthError as exc:
            logger.warning("Password reset rejected reason=%s", exc.reason)
            raise
        new_hash = hash_password(new_password)
        self.reset_tokens.mark_used(token)
        if not self.users.update_password(token.user_id, new_hash):
            raise AuthError(AuthErrorKind.NOT_FOUND, "User not found.")
        revoked = self.refresh_tokens.revoke_all(token.user_id)
        logger.info("Password reset completed user_id=%s sessions_revoked=%d", token.user_id, revoked)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue(self, user: User, device_info: str) -> AuthResult:
        access_token = create_access_token(Principal.from_user(user))
        refresh_token = self.refresh_tokens.create(user.id, device_info)
        return AuthResult(access_token=access_token, user=user, refresh_token=refresh_token.token)
