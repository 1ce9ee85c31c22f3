"""
api/routes/v1/apps.py -- The app launcher: entitled catalog listing and redirect.

Admins see and may open every catalog app. Other users see only the apps
they are entitled to, in catalog order.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from api.models import AppListResponse, AppResponse
from api.services import Services, get_services
from auth.dependencies import Principal, get_current_principal
from auth.entitlements import AppAccess, EntitlementManager

logger = logging.getLogger("appgate.api")

router = APIRouter()


@router.get("/apps", response_model=AppListResponse)
def list_apps(principal: Principal = Depends(get_current_principal)) -> AppListResponse:
    return AppListResponse(apps=[AppResponse.from_entry(entry) for entry in principal.apps])


@router.get("/apps/{slug}", response_class=RedirectResponse, status_code=302)
def open_app(
    slug: str,
    principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> RedirectResponse:
    """Redirect to the app's URL when the principal is entitled to it."""
    access, entry = EntitlementManager.resolve_app(principal.user, services.catalog, slug)
    if access is AppAccess.unknown_app:
        raise HTTPException(status_code=404, detail={"code": "unknown_app", "message": "Application not found."})
    if access is AppAccess.denied:
        logger.info("User %s denied access to app %s", principal.user.id, slug)
        raise HTTPException(
            status_code=403,
            detail={"code": "app_forbidden", "message": "You do not have access to this application."},
        )
    return RedirectResponse(entry.url, status_code=302)
