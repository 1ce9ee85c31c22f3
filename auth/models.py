"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). Stores and
services do the work.

User carries the password hash and never leaves the auth layer. Everything
returned across the trust boundary is a PublicUser, produced by
auth.service.sanitize_user().

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """A stored account, as read from the users table plus its entitlements.

    email is always lowercase. allowed_apps is sorted and unique. Admins are
    treated as approved regardless of the approved flag (see can_sign_in).
    """

    id: int
    email: str
    password_hash: str
    full_name: str = ""
    job_title: str = ""
    phone: str = ""
    is_admin: bool = False
    approved: bool = False
    created_at: str = ""
    allowed_apps: list[str] = field(default_factory=list)

    @property
    def can_sign_in(self) -> bool:
        return self.is_admin or self.approved


@dataclass(frozen=True)
class PublicUser:
    """A user record that is safe to hand to callers: no password hash."""

    id: int
    email: str
    full_name: str
    job_title: str
    phone: str
    is_admin: bool
    approved: bool
    created_at: str
    allowed_apps: tuple[str, ...] = ()

    @property
    def can_sign_in(self) -> bool:
        return self.is_admin or self.approved

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "job_title": self.job_title,
            "phone": self.phone,
            "is_admin": self.is_admin,
            "approved": self.approved,
            "created_at": self.created_at,
            "allowed_apps": list(self.allowed_apps),
        }


@dataclass
class PasswordResetToken:
    """A self-service reset credential.

    token is the lookup key and is never enumerable by id. used only ever
    moves from False to True; used rows are kept for audit.
    """

    id: int
    user_id: int
    token: str
    expires_at: datetime
    used: bool = False
    created_at: str = ""
