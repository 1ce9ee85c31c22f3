"""
api/routes/v1/auth.py -- Registration, session login/logout and the user's own profile.

Sessions are cookie based (Starlette SessionMiddleware). The cookie carries
only user_id; every request re-reads the account so profile, approval and
entitlement changes apply immediately.

Security notes:
  Login errors are generic: unknown email and wrong password both return
  invalid_credentials (timing equalized in AuthService.authenticate).
  pending_approval is only returned after the password verified.
  bcrypt work runs in the threadpool so it never blocks the event loop.
"""

import base64
import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter, login_limit
from api.models import (
    AppResponse,
    LoginRequest,
    MessageResponse,
    PasswordChange,
    ProfileUpdate,
    RegisterRequest,
    RegisterResponse,
    SessionResponse,
    UserResponse,
)
from api.services import Services, get_services
from auth.dependencies import (
    Principal,
    end_session,
    get_current_principal,
    resolve_principal,
    start_session,
    try_get_principal,
)
from auth.notifications import notify_safely

# Auth policy:
# - POST /api/v1/auth/register:        public
# - POST /api/v1/auth/login:           public, rate limited
# - POST /api/v1/auth/logout:          public -- clearing a session needs no prior auth
# - GET  /api/v1/auth/session:         public, 401 {"authenticated": false} when signed out
# - GET  /api/v1/profile:              requires auth
# - PUT  /api/v1/profile:              requires auth
# - PUT  /api/v1/profile/password:     requires auth
router = APIRouter()

REGISTERED_MESSAGE = "Registration received. An administrator will review your account."


def encode_forwarded_user(principal: Principal) -> str:
    """Serialize the principal for the X-Forwarded-User header (base64url JSON)."""
    payload = principal.user.to_dict()
    payload["apps"] = [AppResponse.from_entry(entry).model_dump() for entry in principal.apps]
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201, response_model=RegisterResponse)
async def register(body: RegisterRequest, services: Services = Depends(get_services)) -> RegisterResponse:
    """Create a pending account and notify the admins. Does not sign the caller in."""
    user = await run_in_threadpool(services.auth.register, body.email, body.password)
    await notify_safely(
        f"pending registration emails for user {user.id}",
        services.notifier.send_pending_registration_emails,
        user,
    )
    return RegisterResponse(message=REGISTERED_MESSAGE, user=UserResponse.from_user(user))


@router.post("/auth/login", response_model=SessionResponse)
@limiter.limit(login_limit)  # below @router: FastAPI must register the limited wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and bind the session to the account."""
    services: Services = request.app.state.services
    user = services.auth.authenticate(body.email, body.password)
    start_session(request, user)
    principal = resolve_principal(services.store, services.catalog, request.session)
    resp = JSONResponse(content=SessionResponse.from_principal(principal).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> MessageResponse:
    end_session(request)
    return MessageResponse(message="Logged out.")


@router.get("/auth/session", response_model=SessionResponse)
def session(request: Request) -> JSONResponse:
    """Report who the session belongs to and which apps they may open.

    Also sets X-Forwarded-User so a reverse proxy can hand the identity to
    the downstream application.
    """
    principal = try_get_principal(request)
    if principal is None:
        return JSONResponse(status_code=401, content={"authenticated": False})
    resp = JSONResponse(content=SessionResponse.from_principal(principal).model_dump())
    resp.headers["X-Forwarded-User"] = encode_forwarded_user(principal)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/profile", response_model=UserResponse)
def get_profile(principal: Principal = Depends(get_current_principal)) -> UserResponse:
    return UserResponse.from_user(principal.user)


@router.put("/profile", response_model=UserResponse)
def update_profile(
    body: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> UserResponse:
    user = services.auth.update_profile(
        principal.user.id,
        full_name=body.full_name,
        job_title=body.job_title,
        phone=body.phone,
    )
    return UserResponse.from_user(user)


@router.put("/profile/password", response_model=MessageResponse)
def change_password(
    body: PasswordChange,
    principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> MessageResponse:
    """Re-verify the current password before replacing it. The session stays valid."""
    services.auth.change_password(principal.user.id, body.current_password, body.new_password)
    return MessageResponse(message="Password updated.")
