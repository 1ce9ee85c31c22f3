"""
auth/approval.py -- Admin approval of a pending account.

approve() commits the new state before any notification is attempted:

  1. load the user (UserNotFound if absent)
  2. mint a temporary password and hash it
  3. in ONE store transaction: overwrite the password hash, set approved,
     replace the entitlement set
  4. reload the user and send the temporary password by email

Step 3 invalidates the password the user registered with. The plaintext
temporary password exists only in memory and in that one email. It is not
stored, logged, or returned to the approving admin. A delivery failure in
step 4 is logged and reported in ApprovalResult.notified; the approval
stands.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from starlette.concurrency import run_in_threadpool

from auth.entitlements import normalize_slugs
from auth.errors import UserNotFound
from auth.models import PublicUser
from auth.notifications import Notifier, notify_safely
from auth.passwords import TEMPORARY_PASSWORD_LENGTH, generate_temporary_password, hash_password
from auth.service import sanitize_user
from auth.store import UserStore

logger = logging.getLogger("appgate.auth")


@dataclass(frozen=True)
class ApprovalResult:
    user: PublicUser
    notified: bool


class ApprovalWorkflow:
    def __init__(
        self,
        store: UserStore,
        notifier: Notifier,
        temporary_password_length: int = TEMPORARY_PASSWORD_LENGTH,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._password_length = temporary_password_length

    async def approve(self, user_id: int, allowed_apps: Iterable[str] | None = None) -> ApprovalResult:
        """Approve user_id with exactly allowed_apps (None or [] clears all).

        The bcrypt hash and the store writes run in the threadpool. Only the
        notification is awaited on the event loop.
        """
        approved, temporary_password = await run_in_threadpool(self.commit, user_id, allowed_apps)
        notified = await notify_safely(
            f"approval email for user {user_id}",
            self._notifier.send_user_approval_email,
            approved,
            temporary_password,
        )
        return ApprovalResult(user=approved, notified=notified)

    def commit(self, user_id: int, allowed_apps: Iterable[str] | None = None) -> tuple[PublicUser, str]:
        """Steps 1-3. Blocking; returns the approved user and the plaintext temporary password."""
        if self._store.get_by_id(user_id) is None:
            raise UserNotFound(user_id)

        temporary_password = generate_temporary_password(self._password_length)
        if not self._store.approve_user(user_id, hash_password(temporary_password), normalize_slugs(allowed_apps)):
            # Deleted between the lookup and the write.
            raise UserNotFound(user_id)

        approved = sanitize_user(self._store.get_by_id(user_id))
        if approved is None:
            raise UserNotFound(user_id)
        logger.info("User %s approved with apps %s", user_id, list(approved.allowed_apps))
        return approved, temporary_password
