"""
auth/dependencies.py -- Session principal resolution and FastAPI Depends() helpers.

The session (Starlette SessionMiddleware, signed cookie) holds exactly one
key: "user_id". On every request resolve_principal() loads that user fresh
from the store (profile, flags, entitlements) so approval, profile and
entitlement changes are visible on the very next request. Nothing else is
ever written into the session payload.

A session whose user was deleted, or whose approval was revoked, resolves
to no principal (unauthenticated) and the stale user_id is dropped. It is
never an error.

try_get_principal() is the soft variant (returns None).
get_current_principal() wraps it and raises HTTP 401.
require_admin() wraps get_current_principal() and raises HTTP 403.

Layer rule: may import fastapi (part of the DI system). Reads the wired
collaborators from request.app.state.services without importing api/.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from dataclasses import dataclass, field

from fastapi import HTTPException, Request

from auth.entitlements import EntitlementManager
from auth.models import PublicUser
from auth.service import sanitize_user
from auth.store import UserStore
from core.models import AppEntry

logger = logging.getLogger("appgate.auth")

SESSION_USER_KEY = "user_id"


@dataclass(frozen=True)
class Principal:
    """The authenticated user for one request plus the apps it may reach."""

    user: PublicUser
    apps: list[AppEntry] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return self.user.is_admin


def resolve_principal(
    store: UserStore,
    catalog: list[AppEntry],
    session: MutableMapping,
) -> Principal | None:
    """Map a session to a live, enriched principal, or None."""
    user_id = session.get(SESSION_USER_KEY)
    if user_id is None:
        return None
    user = sanitize_user(store.get_by_id(user_id))
    if user is None or not user.can_sign_in:
        logger.info("Dropping session for unavailable user %s", user_id)
        session.pop(SESSION_USER_KEY, None)
        return None
    return Principal(user=user, apps=EntitlementManager.filter_catalog(user, catalog))


def start_session(request: Request, user: PublicUser) -> None:
    """Bind the session to user. Clears anything left from a previous login."""
    request.session.clear()
    request.session[SESSION_USER_KEY] = user.id


def end_session(request: Request) -> None:
    request.session.clear()


def try_get_principal(request: Request) -> Principal | None:
    """Resolve the request's principal once and memoize it on request.state.

    Never raises for an unauthenticated request; callers that need a hard
    401 should use get_current_principal().
    """
    if hasattr(request.state, "principal"):
        return request.state.principal
    services = request.app.state.services
    principal = resolve_principal(services.store, services.catalog, request.session)
    request.state.principal = principal
    return principal


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return principal


def require_admin(request: Request) -> Principal:
    """Require an admin principal. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    principal = get_current_principal(request)
    if not principal.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return principal
