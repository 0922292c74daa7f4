"""
orgs/models.py -- Domain dataclasses for organizations, members and invites.

Pure data containers; orgs/store.py and the organization routes do the work.
"""

from __future__ import annotations

from dataclasses import dataclass

OWNER = "owner"
ADMIN = "admin"
MEMBER = "member"
ROLES = (OWNER, ADMIN, MEMBER)
# Roles an invite or a role change may grant. Ownership is never handed out
# through these paths.
ASSIGNABLE_ROLES = (ADMIN, MEMBER)


@dataclass
class Organization:
    name: str
    slug: str
    id: str | None = None
    created_at: str | None = None


@dataclass
class Member:
    """A membership row joined with the member's account details."""

    organization_id: str
    user_id: str
    role: str  # "owner" | "admin" | "member"
    name: str = ""
    email: str = ""
    joined_at: str | None = None


@dataclass
class Invite:
    """A pending invitation. The raw token is never part of this record."""

    id: str
    organization_id: str
    email: str
    role: str
    invited_by: str
    expires_at: str
    created_at: str
    invited_by_name: str = ""
    accepted_at: str | None = None
    superseded_at: str | None = None


@dataclass
class OrgScope:
    """Organization context resolved for a request."""

    organization_id: str
    role: str
