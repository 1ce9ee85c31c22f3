"""
auth/reset.py -- Self-service password reset tokens.

Per-user states: no-active-token -> token-issued -> (consumed | expired).

Anti-enumeration: request_reset() returns the same GENERIC_RESET_MESSAGE
whether the email is unknown, belongs to a pending account, or received a
token. Only approved accounts (or admins) get a token and an email.

Tokens live for TOKEN_TTL (one hour). Issuing a new token deletes every
unused token of that user first. A consumed token is kept (used = 1) for
audit and never validates again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from starlette.concurrency import run_in_threadpool

from auth.errors import TokenFailure, TokenInvalid, UserNotFound, WeakPassword
from auth.models import PublicUser
from auth.notifications import Notifier, notify_safely
from auth.passwords import MIN_PASSWORD_LENGTH, check_password_strength, generate_reset_token, hash_password
from auth.service import sanitize_user
from auth.store import UserStore

logger = logging.getLogger("appgate.auth")

TOKEN_TTL = timedelta(hours=1)
GENERIC_RESET_MESSAGE = "If an account exists with that email, you will receive a password reset link."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ResetRequestOutcome:
    """What the caller of request_reset() sees. Identical for every email."""

    success: bool = True
    message: str = GENERIC_RESET_MESSAGE


@dataclass(frozen=True)
class TokenValidation:
    valid: bool
    user_id: int | None = None
    token_id: int | None = None
    reason: TokenFailure | None = None

    @property
    def message(self) -> str | None:
        return self.reason.message if self.reason else None


class PasswordResetWorkflow:
    def __init__(
        self,
        store: UserStore,
        notifier: Notifier,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock

    async def request_reset(self, email: str) -> ResetRequestOutcome:
        """Issue and email a reset token when the account is eligible. Always generic."""
        issued = await run_in_threadpool(self.issue_token, email)
        if issued is not None:
            user, token = issued
            await notify_safely(
                f"password reset email for user {user.id}",
                self._notifier.send_password_reset_email,
                user,
                token,
            )
        return ResetRequestOutcome()

    def issue_token(self, email: str) -> tuple[PublicUser, str] | None:
        """Store a fresh token for an eligible account. Blocking; None when not eligible."""
        user = self._store.get_by_email(email) if email and email.strip() else None
        if user is None or not user.can_sign_in:
            return None

        token = generate_reset_token()
        self._store.create_reset_token(user.id, token, self._clock() + TOKEN_TTL)
        logger.info("Password reset token issued for user %s", user.id)
        return sanitize_user(user), token

    def validate_token(self, token: str | None) -> TokenValidation:
        if not token:
            return TokenValidation(valid=False, reason=TokenFailure.missing)
        record = self._store.get_reset_token(token)
        if record is None:
            return TokenValidation(valid=False, reason=TokenFailure.unknown)
        if record.used:
            return TokenValidation(valid=False, reason=TokenFailure.used)
        if self._clock() > record.expires_at:
            return TokenValidation(valid=False, reason=TokenFailure.expired)
        return TokenValidation(valid=True, user_id=record.user_id, token_id=record.id)

    def reset_password(self, token: str | None, new_password: str | None) -> PublicUser:
        """Consume token and set new_password.

        Raises TokenInvalid (with the validation reason), WeakPassword or
        PasswordTooLong before anything is written. The password write and
        the token consumption share one transaction, which only matches an
        unused, unexpired token. If the token was consumed or expired in
        between, TokenInvalid is raised with the current reason and nothing
        changes.
        """
        validation = self.validate_token(token)
        if not validation.valid:
            raise TokenInvalid(validation.reason)
        if not check_password_strength(new_password):
            raise WeakPassword(MIN_PASSWORD_LENGTH)

        password_hash = hash_password(new_password)
        if not self._store.complete_reset(validation.token_id, validation.user_id, password_hash, now=self._clock()):
            raise TokenInvalid(self.validate_token(token).reason or TokenFailure.used)
        logger.info("Password reset completed for user %s", validation.user_id)

        user = sanitize_user(self._store.get_by_id(validation.user_id))
        if user is None:
            raise UserNotFound(validation.user_id)
        return user
