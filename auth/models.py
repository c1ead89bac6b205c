"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container). Stores and the session manager
do the work; these only own the shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    """Fixed role enumeration. One value today."""

    ADMIN = "admin"


class TokenType(str, Enum):
    """JWT "type" claim. Checked on every verification."""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class RefreshTokenRecord:
    """Server-side revocation anchor for one issued refresh token.

    created_at is epoch seconds. The record expires passively at
    created_at + refresh TTL; verification re-checks that window itself and
    never relies on the purge having run.
    """

    identity_id: int
    token: str
    created_at: float
    id: int | None = None


@dataclass
class Identity:
    """The administrative account.

    email is stored lowercase. hashed_password is a bcrypt digest and never
    leaves the auth package -- callers outside it get an IdentityProfile.
    refresh_tokens is only populated when the store is asked for it.
    """

    email: str
    role: str = Role.ADMIN.value
    id: int | None = None
    hashed_password: str | None = None
    is_active: bool = True
    last_login_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    refresh_tokens: list[RefreshTokenRecord] = field(default_factory=list)


@dataclass(frozen=True)
class IdentityProfile:
    """Sanitized projection of an Identity. Has no secret-bearing fields."""

    id: int
    email: str
    role: str
    is_active: bool
    last_login_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_identity(cls, identity: Identity) -> IdentityProfile:
        return cls(
            id=identity.id,
            email=identity.email,
            role=identity.role,
            is_active=identity.is_active,
            last_login_at=identity.last_login_at,
            created_at=identity.created_at,
            updated_at=identity.updated_at,
        )


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
