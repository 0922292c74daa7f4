"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer authentication.

Credentials arrive only as "Authorization: Bearer <credential>":
  - an access JWT (browser sessions, minted by /auth/login and /auth/refresh)
  - an API key, recognised by its "sr_" prefix (scripts and integrations)

get_current_user_id() accepts access JWTs only. get_user_id_or_api_key()
additionally accepts API keys and is used on the endpoints integrations call.
Refresh tokens are never accepted as bearer credentials.

Every failure is a 401; the message says which check failed:
  missing header   -> "authorization header required"
  no Bearer prefix -> "invalid authorization header format"
  bad/expired JWT  -> "invalid token" / "token expired"
  refresh JWT      -> "invalid token type"
  unknown API key  -> "invalid API key"

On success the user id is attached as request.state.user_id.

Layer rule: no imports from api/ or orgs/. This module may import from
fastapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.api_keys import API_KEY_PREFIX, ApiKeyRegistry
from auth.errors import Unauthenticated
from auth.models import ACCESS, User
from auth.store import UserStore
from auth.tokens import TokenMinter

_BEARER = "Bearer "


def bearer_credential(request: Request) -> str:
    """Extract the raw credential from the Authorization header or raise 401."""
    header = request.headers.get("Authorization", "")
    if not header:
        raise Unauthenticated("authorization header required")
    if not header.startswith(_BEARER) or not header[len(_BEARER) :].strip():
        raise Unauthenticated("invalid authorization header format")
    return header[len(_BEARER) :].strip()


def get_current_user_id(request: Request) -> str:
    """Require a valid access token. Use as a FastAPI dependency:

    @router.get("/protected")
    def route(user_id: str = Depends(get_current_user_id)): ...
    """
    minter: TokenMinter = request.app.state.minter
    claims = minter.verify(bearer_credential(request), expected_type=ACCESS)
    request.state.user_id = claims.user_id
    return claims.user_id


def get_user_id_or_api_key(request: Request) -> str:
    """Require a valid access token or API key."""
    credential = bearer_credential(request)
    if credential.startswith(API_KEY_PREFIX):
        registry: ApiKeyRegistry = request.app.state.api_keys
        user_id = registry.lookup(credential)
    else:
        minter: TokenMinter = request.app.state.minter
        user_id = minter.verify(credential, expected_type=ACCESS).user_id
    request.state.user_id = user_id
    return user_id


def load_user(request: Request, user_id: str) -> User:
    """Fetch the account behind an authenticated id.

    A valid credential for a deleted account is treated as unauthenticated.
    """
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(user_id)
    if user is None:
        raise Unauthenticated("account not found")
    return user
