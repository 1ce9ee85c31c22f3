"""
auth/errors.py -- Closed failure taxonomy for the identity core.

One exception class per failure variant. Each carries only the data that
belongs to that failure plus a stable machine-readable code, so the HTTP
layer maps classes (never message strings) to responses.

Security-sensitive variants keep their messages generic on purpose:
InvalidCredentials never says which half of the credential pair was wrong,
and TokenInvalid uses one wording for unknown and expired tokens.
"""

from __future__ import annotations

from enum import Enum


class AuthError(Exception):
    """Base class for every expected failure raised by the auth layer."""

    code: str = "auth_error"
    message: str = "Request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class AccountExists(AuthError):
    code = "account_exists"
    message = "That email is already registered."

    def __init__(self, email: str) -> None:
        super().__init__()
        self.email = email


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid email or password."


class PendingApproval(AuthError):
    code = "pending_approval"
    message = "Account pending approval."


class InvalidPassword(AuthError):
    code = "invalid_password"
    message = "Current password is incorrect."


class UserNotFound(AuthError):
    code = "user_not_found"
    message = "User not found."

    def __init__(self, user_id: int) -> None:
        super().__init__()
        self.user_id = user_id


class WeakPassword(AuthError):
    code = "weak_password"

    def __init__(self, min_length: int) -> None:
        super().__init__(f"Password must be at least {min_length} characters long.")
        self.min_length = min_length


class PasswordTooLong(AuthError):
    code = "password_too_long"

    def __init__(self, max_bytes: int) -> None:
        super().__init__(f"Password must be at most {max_bytes} bytes long.")
        self.max_bytes = max_bytes


class TokenFailure(str, Enum):
    """Why a password-reset token did not validate."""

    missing = "missing"
    unknown = "unknown"
    used = "used"
    expired = "expired"

    @property
    def message(self) -> str:
        return _TOKEN_MESSAGES[self]


_TOKEN_MESSAGES = {
    TokenFailure.missing: "Token is required.",
    TokenFailure.unknown: "Invalid or expired reset link.",
    TokenFailure.used: "This reset link has already been used.",
    TokenFailure.expired: "This reset link has expired.",
}


class TokenInvalid(AuthError):
    code = "token_invalid"

    def __init__(self, reason: TokenFailure) -> None:
        super().__init__(reason.message)
        self.reason = reason


class StorageFailure(AuthError):
    """Wraps any persistence-layer error. Never retried by the core."""

    code = "storage_failure"
    message = "The account store is unavailable."

    def __init__(self, operation: str) -> None:
        super().__init__()
        self.operation = operation
