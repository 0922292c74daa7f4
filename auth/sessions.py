"""
auth/sessions.py -- Refresh sessions: issue, rotate-on-use, revoke.

Every refresh token names a RefreshSession row through its jti. The row is
persisted BEFORE the token is minted, and only the digest of the jti is
stored, so a database read does not yield usable session ids.

Rotation protocol (the core security property):
    1. verify the presented JWT as a refresh token (signature, alg, expiry)
    2. validate(): row exists for (user, jti), not revoked, not expired
    3. revoke the old row with a conditional UPDATE ... WHERE revoked = 0
    4. issue a brand-new session and token pair
Each refresh token therefore works once. If an attacker replays a stolen
token after the legitimate client rotated it, the replay fails; if the
attacker rotates first, the legitimate client's next refresh fails, which is
detectable rather than silent. Step 3's predicate means two concurrent
rotations of the same token cannot both succeed.

Layer rule: no imports from api/ or orgs/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from auth.errors import Unauthenticated
from auth.hashing import SecretHasher
from auth.models import REFRESH, RefreshSession, TokenPair
from auth.store import UserStore, isoformat, utcnow
from auth.tokens import TokenMinter

logger = logging.getLogger("sendrec.auth.sessions")

REFRESH_COOKIE = "refresh_token"
# Cookie paths: the live one, and the path older clients still carry a copy on.
REFRESH_COOKIE_PATH = "/"
LEGACY_REFRESH_COOKIE_PATH = "/api/auth"


def new_token_id() -> str:
    """Return a random 128-bit session id as 32 hex chars."""
    return secrets.token_hex(16)


class SessionManager:
    def __init__(self, store: UserStore, minter: TokenMinter, hasher: SecretHasher) -> None:
        self._store = store
        self._minter = minter
        self._hasher = hasher

    @property
    def refresh_ttl(self) -> timedelta:
        return self._minter.refresh_ttl

    # ------------------------------------------------------------------
    # Session records
    # ------------------------------------------------------------------

    def create(self, user_id: str, ttl: timedelta | None = None) -> str:
        """Persist a new live session and return its token id."""
        token_id = new_token_id()
        expires_at = utcnow() + (ttl if ttl is not None else self._minter.refresh_ttl)
        self._store.create_refresh_session(
            RefreshSession(
                token_hash=self._hasher.digest(token_id),
                user_id=user_id,
                expires_at=isoformat(expires_at),
            )
        )
        return token_id

    def validate(self, user_id: str, token_id: str) -> None:
        """Raise Unauthenticated unless the session exists, is live and unexpired."""
        session = self._store.get_refresh_session(self._hasher.digest(token_id), user_id)
        if session is None or session.revoked or session.expires_at <= isoformat(utcnow()):
            raise Unauthenticated("invalid refresh token")

    def revoke(self, token_id: str) -> bool:
        """Revoke one session. Idempotent; True only if this call revoked it."""
        return self._store.revoke_refresh_session(self._hasher.digest(token_id))

    def revoke_all(self, user_id: str) -> int:
        count = self._store.revoke_user_sessions(user_id)
        if count:
            logger.info("Revoked %d refresh session(s) for user %s", count, user_id)
        return count

    # ------------------------------------------------------------------
    # Token pairs
    # ------------------------------------------------------------------

    def issue(self, user_id: str) -> TokenPair:
        """Create a session record, then mint the access + refresh pair."""
        token_id = self.create(user_id)
        return TokenPair(
            access_token=self._minter.mint_access_token(user_id),
            refresh_token=self._minter.mint_refresh_token(user_id, token_id),
            access_expires_in=int(self._minter.access_ttl.total_seconds()),
            refresh_expires_in=int(self._minter.refresh_ttl.total_seconds()),
        )

    def rotate(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair, revoking the old session.

        Raises a TokenError or Unauthenticated (all 401) if the token is not a
        live refresh token.
        """
        claims = self._minter.verify(refresh_token, expected_type=REFRESH)
        self.validate(claims.user_id, claims.token_id)
        if not self.revoke(claims.token_id):
            # Lost a race with a concurrent rotation or logout of the same token.
            raise Unauthenticated("invalid refresh token")
        return self.issue(claims.user_id)

    def logout(self, refresh_token: str | None) -> None:
        """Best-effort revoke of the session named by a refresh token.

        Logout always succeeds from the client's point of view: an absent,
        expired or forged token simply has nothing to revoke.
        """
        if not refresh_token:
            return
        try:
            claims = self._minter.verify(refresh_token, expected_type=REFRESH)
        except Unauthenticated:
            return
        self.revoke(claims.token_id)
