"""
api/routes/v1/password_reset.py -- Self-service password reset over email links.

POST /auth/password-reset answers with the same generic message for every
email (anti-enumeration) and is rate limited per client address.
"""

from fastapi import APIRouter, Query, Request
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter, reset_limit
from api.models import MessageResponse, ResetConfirm, ResetRequest, TokenValidationResponse
from api.services import Services

router = APIRouter()


@router.post("/auth/password-reset", response_model=MessageResponse)
@limiter.limit(reset_limit)
async def request_reset(request: Request, body: ResetRequest) -> MessageResponse:
    services: Services = request.app.state.services
    outcome = await services.resets.request_reset(body.email)
    return MessageResponse(success=outcome.success, message=outcome.message)


@router.get("/auth/password-reset/validate", response_model=TokenValidationResponse)
def validate_token(request: Request, token: str = Query(default="", max_length=128)) -> TokenValidationResponse:
    """Let the reset page tell a usable link from a dead one before asking for a password."""
    services: Services = request.app.state.services
    result = services.resets.validate_token(token)
    return TokenValidationResponse(
        valid=result.valid,
        reason=result.reason.value if result.reason else None,
        message=result.message,
    )


@router.post("/auth/password-reset/confirm", response_model=MessageResponse)
async def confirm_reset(request: Request, body: ResetConfirm) -> MessageResponse:
    services: Services = request.app.state.services
    await run_in_threadpool(services.resets.reset_password, body.token, body.password)
    return MessageResponse(message="Password has been reset. You can now sign in.")
