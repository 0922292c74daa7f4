"""
auth/tokens.py -- Session token minting and verification.

Security design decisions:
  JWT: python-jose with HS256. Two token types share one signing key:

    access   15 minutes, stateless. Carries only the user id; nothing is stored
             server-side, so a request authenticated by an access token never
             touches the database. It cannot be revoked before expiry -- the
             short TTL bounds the blast radius of a leak.
    refresh  7 days. Carries a jti that names a RefreshSession record; the
             record is what makes it revocable and single-use (auth/sessions.py).

  Verification pins the algorithm: the header is inspected before decoding and
  anything other than HS256 (including "none" and asymmetric algorithms an
  attacker could pair with a public key) is rejected outright. Failures raise
  typed TokenError subclasses so callers can tell malformed, wrong algorithm,
  bad signature and expired apart; all of them are 401 at the HTTP layer.

  Token values are never logged.

Layer rule: no imports from api/ or orgs/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from auth.errors import (
    ExpiredToken,
    InvalidSignature,
    MalformedToken,
    MissingTokenId,
    UnexpectedAlgorithm,
    WrongTokenType,
)
from auth.models import ACCESS, REFRESH, SessionClaims

ALGORITHM = "HS256"

ACCESS_TOKEN_TTL = timedelta(minutes=15)
REFRESH_TOKEN_TTL = timedelta(days=7)


class TokenMinter:
    """Signs and verifies session claims with a secret fixed at construction."""

    def __init__(
        self,
        secret_key: str,
        access_ttl: timedelta = ACCESS_TOKEN_TTL,
        refresh_ttl: timedelta = REFRESH_TOKEN_TTL,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    def mint_access_token(self, user_id: str, now: datetime | None = None) -> str:
        return self._mint(user_id, ACCESS, self.access_ttl, None, now)

    def mint_refresh_token(self, user_id: str, token_id: str, now: datetime | None = None) -> str:
        """Mint a refresh token naming an existing RefreshSession record.

        The record must already be persisted -- see SessionManager.issue().
        """
        if not token_id:
            raise ValueError("refresh tokens require a token_id")
        return self._mint(user_id, REFRESH, self.refresh_ttl, token_id, now)

    def _mint(
        self,
        user_id: str,
        token_type: str,
        ttl: timedelta,
        token_id: str | None,
        now: datetime | None,
    ) -> str:
        issued = now or datetime.now(timezone.utc)
        payload: dict = {
            "sub": user_id,
            "type": token_type,
            "iat": int(issued.timestamp()),
            "exp": int((issued + ttl).timestamp()),
        }
        if token_id is not None:
            payload["jti"] = token_id
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, token: str, expected_type: str | None = None) -> SessionClaims:
        """Verify signature, algorithm and expiry; return the trusted claims.

        With expected_type set, a token of the other type raises
        WrongTokenType, and a refresh token without a jti raises
        MissingTokenId. Without it the caller must check token_type itself.
        """
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise MalformedToken("invalid token") from exc
        if header.get("alg") != ALGORITHM:
            raise UnexpectedAlgorithm("invalid token")

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError as exc:
            raise ExpiredToken("token expired") from exc
        except JWTClaimsError as exc:
            raise MalformedToken("invalid token") from exc
        except JWTError as exc:
            raise InvalidSignature("invalid token") from exc

        claims = _claims_from_payload(payload)

        if expected_type is not None:
            if claims.token_type != expected_type:
                raise WrongTokenType("invalid token type")
            if expected_type == REFRESH and not claims.token_id:
                raise MissingTokenId("invalid token")
        return claims


def _claims_from_payload(payload: dict) -> SessionClaims:
    user_id = payload.get("sub")
    token_type = payload.get("type")
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(user_id, str) or not user_id:
        raise MalformedToken("invalid token")
    if token_type not in (ACCESS, REFRESH):
        raise MalformedToken("invalid token")
    if not isinstance(iat, int) or not isinstance(exp, int):
        raise MalformedToken("invalid token")
    return SessionClaims(
        user_id=user_id,
        token_type=token_type,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        token_id=payload.get("jti") or None,
    )
