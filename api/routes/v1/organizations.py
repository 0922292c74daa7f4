"""
api/routes/v1/organizations.py -- Organization invites and membership endpoints.

Routes:
  POST   /api/organizations/invites/accept                -- join via invite link (email must match)
  POST   /api/organizations/{org_id}/invites              -- send invite (owner/admin)
  GET    /api/organizations/{org_id}/invites              -- list pending invites (owner/admin)
  DELETE /api/organizations/{org_id}/invites/{invite_id}  -- revoke pending invite (owner/admin)
  GET    /api/organizations/{org_id}/members              -- list members (any member)
  DELETE /api/organizations/{org_id}/members/{user_id}    -- remove member (owner/admin)
  PATCH  /api/organizations/{org_id}/members/{user_id}    -- change role (owner only)

Every {org_id} route resolves the caller's role through get_org_role, so a
non-member sees 404 for the whole organization. The business rules below sit
on top of the require_role gate:
  - nobody removes or re-roles themselves (400)
  - the last owner cannot be removed (400); the store enforces it in the
    DELETE itself so two concurrent removals cannot both pass
  - invites and role changes grant admin or member only, never owner
"""

from __future__ import annotations

import logging

import requests
from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    AcceptInviteRequest,
    AcceptInviteResponse,
    InviteCreate,
    InviteResponse,
    MemberResponse,
    RoleUpdate,
)
from auth.dependencies import get_current_user_id, load_user
from auth.errors import NotFound, ValidationFailed
from core.mailer import EmailSender
from orgs.authz import get_org_role, require_role
from orgs.invites import InviteService
from orgs.models import ADMIN, OWNER, OrgScope
from orgs.store import OrgStore

logger = logging.getLogger("sendrec.api.organizations")

router = APIRouter()


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------


@router.post("/organizations/invites/accept", response_model=AcceptInviteResponse)
def accept_invite(
    request: Request,
    body: AcceptInviteRequest,
    user_id: str = Depends(get_current_user_id),
) -> AcceptInviteResponse:
    """Accept an invite for the signed-in user.

    The invite token alone is not enough: the caller's account email must
    equal the invited address, otherwise 403 and the invite stays usable.
    """
    user = load_user(request, user_id)
    service: InviteService = request.app.state.invites
    accepted = service.accept(body.token, user)
    return AcceptInviteResponse(
        organization_id=accepted.organization.id,
        name=accepted.organization.name,
        slug=accepted.organization.slug,
        role=accepted.role,
        already_member=accepted.already_member,
    )


@router.post("/organizations/{org_id}/invites", response_model=InviteResponse, status_code=201)
def send_invite(
    request: Request,
    body: InviteCreate,
    scope: OrgScope = Depends(get_org_role),
) -> InviteResponse:
    """Invite an email address. Re-inviting the same address replaces the old link."""
    require_role(scope.role, OWNER, ADMIN, message="only owners and admins can send invites")
    service: InviteService = request.app.state.invites
    inviter = load_user(request, request.state.user_id)
    invite, raw_token = service.send(scope.organization_id, inviter.id, body.email, body.role.value)

    org = service.organization(scope.organization_id)
    accept_link = f"{request.app.state.settings.base_url.rstrip('/')}/invites/accept?token={raw_token}"
    mailer: EmailSender = request.app.state.mailer
    try:
        mailer.send_org_invite(invite.email, org.name, inviter.name, accept_link)
    except requests.RequestException:
        logger.exception("Failed to send invite email for invite %s", invite.id)

    return InviteResponse.from_invite(invite)


@router.get("/organizations/{org_id}/invites", response_model=list[InviteResponse])
def list_invites(request: Request, scope: OrgScope = Depends(get_org_role)) -> list[InviteResponse]:
    require_role(scope.role, OWNER, ADMIN, message="only owners and admins can list invites")
    service: InviteService = request.app.state.invites
    return [InviteResponse.from_invite(i) for i in service.list_pending(scope.organization_id)]


@router.delete("/organizations/{org_id}/invites/{invite_id}", status_code=204)
def revoke_invite(invite_id: str, request: Request, scope: OrgScope = Depends(get_org_role)) -> Response:
    require_role(scope.role, OWNER, ADMIN, message="only owners and admins can revoke invites")
    service: InviteService = request.app.state.invites
    if not service.revoke(scope.organization_id, invite_id):
        raise NotFound("invite not found")
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.get("/organizations/{org_id}/members", response_model=list[MemberResponse])
def list_members(request: Request, scope: OrgScope = Depends(get_org_role)) -> list[MemberResponse]:
    org_store: OrgStore = request.app.state.org_store
    return [MemberResponse.from_member(m) for m in org_store.list_members(scope.organization_id)]


@router.delete("/organizations/{org_id}/members/{user_id}", status_code=204)
def remove_member(user_id: str, request: Request, scope: OrgScope = Depends(get_org_role)) -> Response:
    require_role(scope.role, OWNER, ADMIN, message="only owners and admins can remove members")
    if user_id == request.state.user_id:
        raise ValidationFailed("cannot remove yourself")

    org_store: OrgStore = request.app.state.org_store
    target_role = org_store.get_role(scope.organization_id, user_id)
    if target_role is None:
        raise NotFound("member not found")
    if not org_store.remove_member(scope.organization_id, user_id):
        if target_role == OWNER:
            raise ValidationFailed("cannot remove the only owner")
        # Removed concurrently by someone else.
        raise NotFound("member not found")
    logger.info("User %s removed from organization %s", user_id, scope.organization_id)
    return Response(status_code=204)


@router.patch("/organizations/{org_id}/members/{user_id}", response_model=RoleUpdate)
def update_member_role(
    user_id: str,
    request: Request,
    body: RoleUpdate,
    scope: OrgScope = Depends(get_org_role),
) -> RoleUpdate:
    require_role(scope.role, OWNER, message="only owners can change roles")
    if user_id == request.state.user_id:
        raise ValidationFailed("cannot change your own role")

    org_store: OrgStore = request.app.state.org_store
    if not org_store.update_member_role(scope.organization_id, user_id, body.role.value):
        raise NotFound("member not found")
    return body
