"""
api/routes/v1/admin.py -- The admin console: pending queue, approval and entitlements.

Every route requires an admin principal (require_admin). Slugs submitted in
allowed_apps must exist in the catalog; anything else is rejected with 400
unknown_app before the store is touched.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from api.models import AppGrant, ApprovalResponse, UserResponse
from api.services import Services, get_services
from auth.dependencies import Principal, require_admin
from auth.entitlements import normalize_slugs

router = APIRouter(prefix="/admin/users")


def _checked_slugs(body: AppGrant, services: Services) -> list[str]:
    slugs = normalize_slugs(body.allowed_apps)
    known = {entry.slug for entry in services.catalog}
    unknown = [slug for slug in slugs if slug not in known]
    if unknown:
        raise HTTPException(
            status_code=400,
            detail={"code": "unknown_app", "message": f"Unknown application(s): {', '.join(unknown)}"},
        )
    return slugs


@router.get("", response_model=list[UserResponse])
def list_users(
    _admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
) -> list[UserResponse]:
    return [UserResponse.from_user(user) for user in services.auth.list_users()]


@router.get("/pending", response_model=list[UserResponse])
def list_pending(
    _admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
) -> list[UserResponse]:
    return [UserResponse.from_user(user) for user in services.auth.list_pending()]


@router.post("/{user_id}/approve", response_model=ApprovalResponse)
async def approve(
    user_id: int,
    body: AppGrant,
    _admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
) -> ApprovalResponse:
    """Approve a pending account with exactly the given apps and email a temporary password.

    notified=false means the approval stands but the email did not go out.
    """
    result = await services.approvals.approve(user_id, _checked_slugs(body, services))
    return ApprovalResponse(user=UserResponse.from_user(result.user), notified=result.notified)


@router.post("/{user_id}/unapprove", response_model=UserResponse)
def unapprove(
    user_id: int,
    _admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
) -> UserResponse:
    return UserResponse.from_user(services.auth.revoke_approval(user_id))


@router.delete("/{user_id}", status_code=204)
def reject(
    user_id: int,
    _admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
) -> Response:
    services.auth.reject(user_id)
    return Response(status_code=204)


@router.post("/{user_id}/make-admin", response_model=UserResponse)
def make_admin(
    user_id: int,
    _admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
) -> UserResponse:
    return UserResponse.from_user(services.auth.set_admin(user_id, True))


@router.post("/{user_id}/remove-admin", response_model=UserResponse)
def remove_admin(
    user_id: int,
    _admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
) -> UserResponse:
    return UserResponse.from_user(services.auth.set_admin(user_id, False))


@router.put("/{user_id}/apps", response_model=UserResponse)
def set_apps(
    user_id: int,
    body: AppGrant,
    _admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
) -> UserResponse:
    """Replace the user's entitlement set. An empty list revokes every app."""
    services.entitlements.set_entitlements(user_id, _checked_slugs(body, services))
    user = services.auth.get_user(user_id)
    return UserResponse.from_user(user)
