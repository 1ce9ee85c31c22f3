"""
API request and response models for AppGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
core/models.py, which own the internal domain representation. Route handlers
map between the two.

Boundary validation lives here: email shape, password length caps, password
confirmation, and the profile field rules. The auth layer still enforces the
rules it owns (WeakPassword and PasswordTooLong on reset) on its own.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.dependencies import Principal
from auth.models import PublicUser
from auth.passwords import MAX_PASSWORD_BYTES, MIN_PASSWORD_LENGTH, password_too_long
from core.models import AppEntry

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[0-9 ()-]{7,20}$"

# Character cap for every password field. Fields that are hashed are also
# held to MAX_PASSWORD_BYTES of UTF-8, which bcrypt will not go past.
_MAX_PASSWORD = 128


def _hashable(value: str) -> str:
    if password_too_long(value):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD)
    confirm_password: Optional[str] = Field(default=None, max_length=_MAX_PASSWORD)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _hashable(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD)


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/profile."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(min_length=2, max_length=255)
    job_title: str = Field(default="", max_length=120)
    phone: str = Field(default="", max_length=20)

    @field_validator("phone")
    @classmethod
    def phone_shape(cls, value: str) -> str:
        if value and not re.match(PHONE_PATTERN, value):
            raise ValueError("Phone number must contain only digits and basic punctuation")
        return value


class PasswordChange(BaseModel):
    """Request body for PUT /api/v1/profile/password."""

    current_password: str = Field(min_length=1, max_length=_MAX_PASSWORD)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=_MAX_PASSWORD)
    confirm_password: str = Field(max_length=_MAX_PASSWORD)

    @field_validator("new_password")
    @classmethod
    def new_password_fits_bcrypt(cls, value: str) -> str:
        return _hashable(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "PasswordChange":
        if self.new_password != self.confirm_password:
            raise ValueError("New password and confirmation do not match")
        return self


class ResetRequest(BaseModel):
    """Request body for POST /api/v1/auth/password-reset.

    Any string is accepted: a malformed email must get the same generic
    answer as an unknown one.
    """

    email: str = Field(default="", max_length=255)


class ResetConfirm(BaseModel):
    """Request body for POST /api/v1/auth/password-reset/confirm.

    Password length is checked by the reset workflow (WeakPassword, or
    PasswordTooLong past 72 bytes) so the token is validated first and the
    caller sees the token problem, if any.
    """

    token: str = Field(default="", max_length=128)
    password: str = Field(default="", max_length=_MAX_PASSWORD)
    confirm_password: Optional[str] = Field(default=None, max_length=_MAX_PASSWORD)

    @model_validator(mode="after")
    def passwords_match(self) -> "ResetConfirm":
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Passwords do not match")
        return self


class AppGrant(BaseModel):
    """Request body for approve and PUT .../apps. An empty list clears all entitlements."""

    allowed_apps: list[str] = Field(default_factory=list, max_length=100)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Sanitized user. There is no password field to leak."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    full_name: str
    job_title: str
    phone: str
    is_admin: bool
    approved: bool
    created_at: str
    allowed_apps: list[str]

    @classmethod
    def from_user(cls, user: PublicUser) -> "UserResponse":
        return cls(**user.to_dict())


class AppResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    slug: str
    name: str
    url: str
    description: str = ""
    icon: str = ""

    @classmethod
    def from_entry(cls, entry: AppEntry) -> "AppResponse":
        return cls(slug=entry.slug, name=entry.name, url=entry.url, description=entry.description, icon=entry.icon)


class SessionResponse(BaseModel):
    """Response for GET /api/v1/auth/session and POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    user: Optional[UserResponse] = None
    apps: list[AppResponse] = Field(default_factory=list)

    @classmethod
    def from_principal(cls, principal: Principal) -> "SessionResponse":
        return cls(
            authenticated=True,
            user=UserResponse.from_user(principal.user),
            apps=[AppResponse.from_entry(a) for a in principal.apps],
        )


class AppListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    apps: list[AppResponse]


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse


class ApprovalResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse
    notified: bool


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class TokenValidationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    reason: Optional[str] = None
    message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
