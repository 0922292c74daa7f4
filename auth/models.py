"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the domain shape.

Layer rule: no imports from api/ or orgs/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ACCESS = "access"
REFRESH = "refresh"


@dataclass
class User:
    """An account holder. id is the stable identity every credential resolves to.

    email is stored lower-cased so lookups and invite matching are
    case-insensitive. email_verified gates password login.
    """

    email: str
    name: str
    hashed_password: str
    id: str | None = None
    email_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class SessionClaims:
    """Verified contents of a session token.

    token_id is None for access tokens (stateless, never individually
    revocable) and always set for refresh tokens.
    """

    user_id: str
    token_type: str  # ACCESS | REFRESH
    issued_at: datetime
    expires_at: datetime
    token_id: str | None = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int  # seconds
    refresh_expires_in: int  # seconds


@dataclass
class RefreshSession:
    """Server-side record behind one refresh token.

    token_hash is the lookup digest of the token id carried in the refresh
    JWT; the id itself is never persisted. Records are marked revoked, never
    deleted, so a replayed token can be recognised as such.
    """

    token_hash: str
    user_id: str
    expires_at: str
    revoked: bool = False
    revoked_at: str | None = None
    created_at: str | None = None


@dataclass
class ApiKey:
    """A long-lived bearer credential for scripts and integrations.

    - key_hash is the lookup digest of the raw key, enabling an O(1) indexed
      lookup. 256 bits of entropy make bcrypt's slowness unnecessary here.
    - key_prefix (first 12 chars of the raw key) is stored for display only.
    - The raw key is never persisted. It is returned ONCE at creation.
    """

    user_id: str
    name: str
    key_hash: str
    key_prefix: str
    id: str | None = None
    created_at: str | None = None
    last_used_at: str | None = None
