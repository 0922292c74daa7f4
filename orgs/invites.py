"""
orgs/invites.py -- Organization invitations on top of SingleUseTokenFlow.

An invite is a single-use token whose subject is (organization_id, email):
re-inviting the same address supersedes the earlier link. Acceptance runs
an email-match guard BEFORE the token is consumed, so somebody else who gets
hold of the link cannot burn it, and adds the membership as the consumption
side effect.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.engine import Engine

from auth.errors import Conflict, Forbidden, ValidationFailed
from auth.hashing import SecretHasher
from auth.models import User
from auth.single_use import SingleUseTokenFlow
from auth.store import new_id
from orgs.models import ASSIGNABLE_ROLES, MEMBER, Invite, Organization
from orgs.store import OrgStore, invites

logger = logging.getLogger("sendrec.orgs.invites")

INVITE_TTL = timedelta(days=7)


def invite_flow(engine: Engine, hasher: SecretHasher, ttl: timedelta = INVITE_TTL) -> SingleUseTokenFlow:
    return SingleUseTokenFlow(
        engine,
        invites,
        name="org_invite",
        ttl=ttl,
        hasher=hasher,
        subject_columns=("organization_id", "email"),
        used_column="accepted_at",
        superseded_column="superseded_at",
        failure_message="invalid or expired invite",
    )


@dataclass
class AcceptedInvite:
    organization: Organization
    role: str
    already_member: bool = False


class InviteService:
    def __init__(self, org_store: OrgStore, flow: SingleUseTokenFlow) -> None:
        self.org_store = org_store
        self.flow = flow

    def send(self, org_id: str, inviter_id: str, email: str, role: str = MEMBER) -> tuple[Invite, str]:
        """Create an invite and return it with the raw token for the email link.

        Raises ValidationFailed for a role other than admin/member and
        Conflict if the address already belongs to a member. A pending
        invite to the same address is stamped superseded_at, not
        accepted_at, and its link stops working.
        """
        if role not in ASSIGNABLE_ROLES:
            raise ValidationFailed("role must be admin or member")
        email = email.strip().lower()
        if self.org_store.has_member_email(org_id, email):
            raise Conflict("user is already a member")

        invite_id = new_id()
        raw = self.flow.issue(
            {"organization_id": org_id, "email": email},
            id=invite_id,
            role=role,
            invited_by=inviter_id,
        )
        invite = self.org_store.get_invite(invite_id)
        logger.info("Invite %s created for organization %s", invite_id, org_id)
        return invite, raw

    def list_pending(self, org_id: str) -> list[Invite]:
        return self.org_store.list_pending_invites(org_id)

    def revoke(self, org_id: str, invite_id: str) -> bool:
        return self.org_store.delete_invite(org_id, invite_id)

    def accept(self, raw_token: str, user: User) -> AcceptedInvite:
        """Consume an invite for `user` and add the membership.

        A user who is already a member still consumes the invite; the
        existing role is kept.
        """

        def guard(record: dict) -> None:
            if record["email"].casefold() != user.email.casefold():
                raise Forbidden("invite was sent to a different email")

        outcome: dict = {}

        def join(record: dict) -> None:
            outcome["added"] = self.org_store.add_member(record["organization_id"], user.id, record["role"])

        record = self.flow.consume(raw_token, guard=guard, on_consumed=join)
        org_id = record["organization_id"]
        org = self.org_store.get_organization(org_id)
        if outcome["added"]:
            logger.info("User %s joined organization %s", user.id, org_id)
            return AcceptedInvite(organization=org, role=record["role"])
        return AcceptedInvite(
            organization=org,
            role=self.org_store.get_role(org_id, user.id) or record["role"],
            already_member=True,
        )

    def organization(self, org_id: str) -> Organization | None:
        return self.org_store.get_organization(org_id)
