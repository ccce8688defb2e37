"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Mirrors the
approach in projects/models.py -- dataclasses own domain shape; stores and
flows do the work. RefreshToken.is_valid() is the one exception: the validity
rule is part of the record's definition and every caller must agree on it.

Layer rule: no imports from api/, projects/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)


@dataclass
class User:
    """A registered account.

    email is stored lower-cased and is the login identifier.
    hashed_password is a bcrypt digest and must never leave the auth layer --
    use public_profile() for anything that crosses the API boundary.
    """

    email: str
    hashed_password: str
    first_name: str
    last_name: str
    role: str = ROLE_USER  # "user" | "admin"
    id: int | None = None
    avatar: str | None = None
    is_active: bool = True
    created_at: str | None = None
    last_login_at: str | None = None

    def public_profile(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "avatar": self.avatar,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "last_login_at": self.last_login_at,
        }


@dataclass(frozen=True)
class Principal:
    """The identity resolved for one request. Never persisted.

    Built from a User record or from a cached profile entry.
    """

    id: int
    email: str
    role: str
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(id=user.id, email=user.email, role=user.role, is_active=user.is_active)

    @classmethod
    def from_profile(cls, profile: dict) -> Principal:
        return cls(
            id=int(profile["id"]),
            email=profile["email"],
            role=profile["role"],
            is_active=bool(profile["is_active"]),
        )


@dataclass
class RefreshToken:
    """Server-side record of one issued refresh secret.

    token_hash is HMAC-SHA256 of the bearer string (see auth/tokens.py). The
    raw secret is never stored. The only mutation after insert is revoked
    flipping to True; rows are deleted by the expiry sweep only.
    """

    user_id: int
    token_hash: str
    expires_at: datetime
    id: int | None = None
    issued_at: datetime | None = None
    revoked: bool = False
    ip: str | None = None
    user_agent: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.revoked and not self.is_expired(now)
