"""
auth/service.py -- Registration, login, password change and account administration.

State machine per account:
  none -> pending   (register)
  none -> approved  (bootstrap admin via ensure_admin)
  pending -> approved only through auth.approval.ApprovalWorkflow.

Every mutating method returns the post-mutation record re-read from the
store, never the caller's input echoed back. Every user value handed to a
caller is a PublicUser (see sanitize_user); the password hash stays here.

Timing [anti-enumeration]: authenticate() always runs bcrypt, against
DUMMY_HASH when the email is unknown, so unknown-email and wrong-password
take the same time and raise the same InvalidCredentials.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging

from auth.errors import AccountExists, InvalidCredentials, InvalidPassword, PendingApproval, UserNotFound
from auth.models import PublicUser, User
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.store import UserStore, normalize_email

logger = logging.getLogger("appgate.auth")


def sanitize_user(user: User | None) -> PublicUser | None:
    """Project a stored user onto the fields that may leave the auth layer."""
    if user is None:
        return None
    return PublicUser(
        id=user.id,
        email=user.email,
        full_name=user.full_name or "",
        job_title=user.job_title or "",
        phone=user.phone or "",
        is_admin=user.is_admin,
        approved=user.approved,
        created_at=user.created_at,
        allowed_apps=tuple(user.allowed_apps),
    )


class AuthService:
    """Account workflows that do not involve notifications."""

    def __init__(self, store: UserStore) -> None:
        self._store = store

    sanitize = staticmethod(sanitize_user)

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def register(self, email: str, password: str) -> PublicUser:
        """Create a pending, non-admin account with no entitlements.

        Raises AccountExists if the email is taken (case-insensitive). Does
        not create a session.
        """
        normalized = normalize_email(email)
        if self._store.get_by_email(normalized) is not None:
            raise AccountExists(normalized)
        user = self._store.create_user(normalized, hash_password(password))
        logger.info("Registered pending account %s (id=%s)", user.email, user.id)
        return sanitize_user(user)

    def authenticate(self, email: str, password: str) -> PublicUser:
        """Verify credentials, then the approval gate.

        The approval check runs only after the password has verified, so the
        approval state of an account is never disclosed without a valid
        password.
        """
        user = self._store.get_by_email(email)
        if user is None:
            verify_password(password, DUMMY_HASH)
            raise InvalidCredentials()
        if not verify_password(password, user.password_hash):
            raise InvalidCredentials()
        if not user.can_sign_in:
            raise PendingApproval()
        return sanitize_user(user)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> PublicUser:
        """Re-verify the current password, then store a hash of the new one."""
        user = self._require(user_id)
        if not verify_password(current_password, user.password_hash):
            raise InvalidPassword()
        self._store.update_password(user_id, hash_password(new_password))
        logger.info("Password changed for user %s", user_id)
        return sanitize_user(self._require(user_id))

    def update_profile(self, user_id: int, *, full_name: str, job_title: str = "", phone: str = "") -> PublicUser:
        self._require(user_id)
        self._store.update_profile(user_id, full_name=full_name, job_title=job_title, phone=phone)
        return sanitize_user(self._require(user_id))

    def get_user(self, user_id: int) -> PublicUser | None:
        return sanitize_user(self._store.get_by_id(user_id))

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_users(self) -> list[PublicUser]:
        return [sanitize_user(u) for u in self._store.list_users()]

    def list_pending(self) -> list[PublicUser]:
        return [sanitize_user(u) for u in self._store.list_pending()]

    def set_admin(self, user_id: int, is_admin: bool) -> PublicUser:
        """Promote or demote an account."""
        if not self._store.set_admin(user_id, is_admin):
            raise UserNotFound(user_id)
        logger.info("User %s admin flag set to %s", user_id, is_admin)
        return sanitize_user(self._require(user_id))

    def revoke_approval(self, user_id: int) -> PublicUser:
        """Send an approved account back to pending. Admins still pass the gate."""
        if not self._store.set_approval(user_id, False):
            raise UserNotFound(user_id)
        logger.info("Approval revoked for user %s", user_id)
        return sanitize_user(self._require(user_id))

    def reject(self, user_id: int) -> None:
        """Hard-delete an account and everything it owns."""
        if not self._store.delete_user(user_id):
            raise UserNotFound(user_id)
        logger.info("User %s rejected and deleted", user_id)

    def ensure_admin(self, email: str, password: str) -> PublicUser:
        """Bootstrap an approved admin account.

        Creates the account when missing. An existing account is promoted
        and approved, and its password is left alone.
        """
        existing = self._store.get_by_email(email)
        if existing is None:
            user = self._store.create_user(email, hash_password(password), is_admin=True, approved=True)
            logger.info("Admin user seeded: %s", user.email)
            return sanitize_user(user)
        if not existing.is_admin or not existing.approved:
            self._store.set_admin(existing.id, True)
            self._store.set_approval(existing.id, True)
            logger.info("Existing user promoted to admin: %s", existing.email)
        return sanitize_user(self._require(existing.id))

    def _require(self, user_id: int) -> User:
        user = self._store.get_by_id(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user
