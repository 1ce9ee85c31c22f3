"""
auth/notifications.py -- The notification contract the identity core depends on.

The core never imports a mail implementation. Workflows receive any object
satisfying Notifier (notify.dispatcher.MailDispatcher in production, a
recording fake in tests) and call it through notify_safely(), so a failed or
misbehaving delivery is logged and reported as False but never undoes a
committed state transition.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from auth.models import PublicUser

logger = logging.getLogger("appgate.auth")


class Notifier(Protocol):
    async def send_pending_registration_emails(self, user: PublicUser) -> bool: ...

    async def send_user_approval_email(self, user: PublicUser, temporary_password: str) -> bool: ...

    async def send_password_reset_email(self, user: PublicUser, token: str) -> bool: ...


async def notify_safely(description: str, send: Callable[..., Awaitable[Any]], *args: Any) -> bool:
    """Await a notifier call, converting any exception into a logged False."""
    try:
        delivered = bool(await send(*args))
    except Exception:
        logger.exception("Notification failed: %s", description)
        return False
    if not delivered:
        logger.warning("Notification not delivered: %s", description)
    return delivered
