"""
auth/entitlements.py -- Which downstream apps a user may reach.

Entitlements are stored rows for ordinary users. Admins are entitled to the
whole catalog by construction, whatever rows they have.

Layer rule: imports core/ for the catalog types only.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum

from auth.errors import UserNotFound
from auth.models import PublicUser, User
from auth.store import UserStore
from core.catalog import find_app
from core.models import AppEntry

logger = logging.getLogger("appgate.auth")


class AppAccess(str, Enum):
    granted = "granted"
    denied = "denied"
    unknown_app = "unknown_app"


def normalize_slugs(slugs: Iterable[str] | None) -> list[str]:
    """Trim, drop blanks, de-duplicate and sort. ["a", "a", " "] -> ["a"]."""
    if not slugs:
        return []
    return sorted({slug.strip() for slug in slugs if slug and slug.strip()})


class EntitlementManager:
    """Computes and mutates the set of applications a user may reach."""

    def __init__(self, store: UserStore) -> None:
        self._store = store

    def set_entitlements(self, user_id: int, slugs: Iterable[str] | None) -> list[str]:
        """Replace the user's entitlement set and return the new sorted set.

        Idempotent: the same input always yields the same stored set.
        Raises UserNotFound for an unknown user id.
        """
        if self._store.get_by_id(user_id) is None:
            raise UserNotFound(user_id)
        apps = self._store.replace_apps(user_id, normalize_slugs(slugs))
        logger.info("Entitlements replaced for user %s (%d apps)", user_id, len(apps))
        return apps

    def get_entitlements(self, user_id: int) -> list[str]:
        return self._store.get_apps(user_id)

    @staticmethod
    def filter_catalog(user: User | PublicUser | None, catalog: list[AppEntry]) -> list[AppEntry]:
        """Return the catalog entries this user may see, in catalog order.

        Admins see the whole catalog. No user sees nothing.
        """
        if user is None:
            return []
        if user.is_admin:
            return list(catalog)
        allowed = set(user.allowed_apps)
        return [entry for entry in catalog if entry.slug in allowed]

    @staticmethod
    def resolve_app(
        user: User | PublicUser, catalog: list[AppEntry], slug: str
    ) -> tuple[AppAccess, AppEntry | None]:
        """Look up a catalog app for launch, telling unknown apps from forbidden ones."""
        entry = find_app(catalog, slug)
        if entry is None:
            return AppAccess.unknown_app, None
        if user.is_admin or slug in user.allowed_apps:
            return AppAccess.granted, entry
        return AppAccess.denied, entry
