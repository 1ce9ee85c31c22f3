"""
api/services.py -- Explicitly constructed collaborators for one running gateway.

Nothing in the identity core is a module-level singleton. build_services()
wires a UserStore, the app catalog, a notifier and the workflows that share
them. open() prepares the store (migrations, bootstrap admin) and close()
releases it. The FastAPI lifespan owns both calls and exposes the instance
as app.state.services. Tests build their own Services around in-memory
stores and a recording notifier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request

from auth.approval import ApprovalWorkflow
from auth.entitlements import EntitlementManager
from auth.notifications import Notifier
from auth.reset import PasswordResetWorkflow
from auth.service import AuthService
from auth.store import UserStore
from core.catalog import load_catalog
from core.config import Settings
from core.models import AppEntry
from notify.dispatcher import MailDispatcher

logger = logging.getLogger("appgate.api")


@dataclass
class Services:
    store: UserStore
    catalog: list[AppEntry]
    notifier: Notifier
    auth: AuthService
    entitlements: EntitlementManager
    approvals: ApprovalWorkflow
    resets: PasswordResetWorkflow

    def open(self, admin_email: str = "", admin_password: str = "") -> None:
        """Migrate the schema, then seed the bootstrap admin when configured."""
        version = self.store.migrate()
        logger.info("Account store ready (schema version %d)", version)
        if admin_email and admin_password:
            self.auth.ensure_admin(admin_email, admin_password)
        elif not self.store.has_users():
            logger.warning("No users exist and ADMIN_EMAIL/ADMIN_PASSWORD are not set.")

    def close(self) -> None:
        self.store.close()


def assemble(
    store: UserStore,
    catalog: list[AppEntry],
    notifier: Notifier,
    temporary_password_length: int = 16,
) -> Services:
    """Wire the workflows around already-built infrastructure."""
    return Services(
        store=store,
        catalog=catalog,
        notifier=notifier,
        auth=AuthService(store),
        entitlements=EntitlementManager(store),
        approvals=ApprovalWorkflow(store, notifier, temporary_password_length),
        resets=PasswordResetWorkflow(store, notifier),
    )


def build_services(settings: Settings) -> Services:
    """Build production infrastructure from settings and wire it."""
    return assemble(
        store=UserStore(settings.database_url),
        catalog=load_catalog(settings.apps_catalog_path),
        notifier=MailDispatcher(settings),
        temporary_password_length=settings.temporary_password_length,
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the Services wired by the lifespan."""
    return request.app.state.services
