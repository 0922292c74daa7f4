"""
api/routes/v1/user.py -- Current user and API key endpoints.

Routes:
  GET    /api/user                    -- current user; access token OR API key
  PATCH  /api/user                    -- change name and/or password (access token)
  POST   /api/settings/api-keys       -- create API key; raw key shown once
  GET    /api/settings/api-keys       -- list own keys (prefix only)
  DELETE /api/settings/api-keys/{id}  -- delete own key (ownership checked)

GET /api/user honours X-Organization-Id: with the header the response echoes
the caller's role in that organization, and a non-member gets 403.

Managing API keys requires an access token. An API key cannot mint or
revoke other keys.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    ApiKeyCreate,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    MessageResponse,
    OrgScopeResponse,
    UserResponse,
    UserUpdate,
)
from auth.accounts import AccountService
from auth.api_keys import ApiKeyRegistry
from auth.dependencies import get_current_user_id, get_user_id_or_api_key, load_user
from auth.errors import NotFound, ValidationFailed
from orgs.authz import get_org_scope
from orgs.models import OrgScope

logger = logging.getLogger("sendrec.api.user")

router = APIRouter()


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------


@router.get("/user", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: str = Depends(get_user_id_or_api_key),
    scope: Optional[OrgScope] = Depends(get_org_scope),
) -> UserResponse:
    user = load_user(request, user_id)
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        email_verified=user.email_verified,
        created_at=user.created_at,
        organization=(
            OrgScopeResponse(organization_id=scope.organization_id, role=scope.role) if scope is not None else None
        ),
    )


@router.patch("/user", response_model=MessageResponse)
def update_user(
    request: Request,
    body: UserUpdate,
    user_id: str = Depends(get_current_user_id),
) -> MessageResponse:
    """Update the display name and/or password.

    A new password requires the current one. Changing the password does not
    revoke other sessions; the password reset flow does.
    """
    if body.name is None and body.new_password is None:
        raise ValidationFailed("nothing to update")

    user = load_user(request, user_id)
    accounts: AccountService = request.app.state.accounts
    if body.new_password is not None:
        accounts.change_password(user, body.current_password or "", body.new_password)
    if body.name is not None:
        accounts.store.update_user(user.id, name=body.name)
    return MessageResponse(message="Settings updated")


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


@router.post("/settings/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
def create_api_key(
    request: Request,
    body: ApiKeyCreate,
    user_id: str = Depends(get_current_user_id),
) -> ApiKeyCreatedResponse:
    """Generate a new API key. The raw key is in this response and nowhere else."""
    registry: ApiKeyRegistry = request.app.state.api_keys
    key, raw_key = registry.generate(user_id, body.name)
    return ApiKeyCreatedResponse(
        id=key.id,
        name=key.name,
        key_prefix=key.key_prefix,
        created_at=key.created_at,
        last_used_at=None,
        key=raw_key,
    )


@router.get("/settings/api-keys", response_model=list[ApiKeyResponse])
def list_api_keys(
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> list[ApiKeyResponse]:
    registry: ApiKeyRegistry = request.app.state.api_keys
    return [ApiKeyResponse.from_key(k) for k in registry.list(user_id)]


@router.delete("/settings/api-keys/{key_id}", status_code=204)
def delete_api_key(
    key_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> Response:
    """Delete one of the caller's keys. Someone else's key id is a 404."""
    registry: ApiKeyRegistry = request.app.state.api_keys
    if not registry.delete(user_id, key_id):
        raise NotFound("API key not found")
    return Response(status_code=204)
