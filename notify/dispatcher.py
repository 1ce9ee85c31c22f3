"""
notify/dispatcher.py -- Email notifications for the account lifecycle.

MailDispatcher satisfies auth.notifications.Notifier. Bodies are rendered
from Jinja2 templates in notify/templates/ (one .txt.j2 and one .html.j2
per message) and delivered with aiosmtplib.

Contract: every public method returns True when all messages were handed
to the SMTP server and False otherwise. None of them raise. Delivery
errors are logged here; callers decide whether a False matters (for the
identity core it never does).

The transport is not a module-level singleton: each dispatcher is built
from Settings by the service container and opens one SMTP connection per
message, bounded by mail_timeout.
"""

from __future__ import annotations

import asyncio
import logging
from email.message import EmailMessage
from pathlib import Path
from typing import Any

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from auth.models import PublicUser
from core.config import Settings

logger = logging.getLogger("appgate.notify")

_TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
PRODUCT_NAME = "AppGate"


class MailDispatcher:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._env = Environment(
            loader=FileSystemLoader(str(_TEMPLATE_DIR)),
            autoescape=select_autoescape(enabled_extensions=("html.j2",), default_for_string=False),
            keep_trailing_newline=True,
        )

    @property
    def enabled(self) -> bool:
        return self._settings.mail_enabled

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def send_pending_registration_emails(self, user: PublicUser) -> bool:
        """Tell the admins about a new registration and the registrant that it is pending."""
        context = {"user": user}
        deliveries = []
        admins = self._settings.admin_recipients
        if admins:
            deliveries.append(
                self._deliver(admins, f"New {PRODUCT_NAME} registration: {user.email}", "admin-approval-request", context)
            )
        else:
            logger.warning("No admin recipients configured for approval request emails.")
        deliveries.append(
            self._deliver(
                [user.email],
                f"Your {PRODUCT_NAME} registration is pending approval",
                "registrant-pending",
                context,
            )
        )
        results = await asyncio.gather(*deliveries)
        return all(results)

    async def send_user_approval_email(self, user: PublicUser, temporary_password: str) -> bool:
        context = {"user": user, "temporary_password": temporary_password, "login_url": self._url("/login")}
        return await self._deliver(
            [user.email],
            f"Your {PRODUCT_NAME} account has been approved",
            "registrant-approved",
            context,
        )

    async def send_password_reset_email(self, user: PublicUser, token: str) -> bool:
        context = {
            "user": user,
            "reset_url": self._url(f"/reset-password?token={token}"),
            "expires_in_minutes": 60,
        }
        return await self._deliver([user.email], f"Reset your {PRODUCT_NAME} password", "password-reset", context)

    # ------------------------------------------------------------------
    # Rendering and transport
    # ------------------------------------------------------------------

    def render(self, template: str, context: dict[str, Any]) -> tuple[str, str]:
        """Return (text, html) bodies for the named template pair."""
        full_context = {"product_name": PRODUCT_NAME, **context}
        text = self._env.get_template(f"{template}.txt.j2").render(full_context)
        html = self._env.get_template(f"{template}.html.j2").render(full_context)
        return text, html

    def build_message(self, to: list[str], subject: str, template: str, context: dict[str, Any]) -> EmailMessage:
        text, html = self.render(template, context)
        message = EmailMessage()
        message["From"] = self._settings.mail_from
        message["To"] = ", ".join(to)
        message["Subject"] = subject
        message.set_content(text)
        message.add_alternative(html, subtype="html")
        return message

    async def _deliver(self, to: list[str], subject: str, template: str, context: dict[str, Any]) -> bool:
        if not self.enabled:
            logger.warning("Mail transport is not configured. Skipping email delivery for: %s", subject)
            return False
        try:
            message = self.build_message(to, subject, template, context)
        except TemplateError:
            logger.exception("Failed to render email template %s", template)
            return False

        s = self._settings
        try:
            await aiosmtplib.send(
                message,
                hostname=s.mail_host,
                port=s.mail_port,
                username=s.mail_username or None,
                password=s.mail_password or None,
                use_tls=s.mail_use_tls,
                start_tls=False if s.mail_use_tls else s.mail_start_tls,
                timeout=s.mail_timeout,
            )
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError):
            logger.exception("Failed to deliver email %r to %d recipient(s)", subject, len(to))
            return False
        logger.info("Delivered email %r to %d recipient(s)", subject, len(to))
        return True

    def _url(self, path: str) -> str:
        return self._settings.public_base_url.rstrip("/") + path
