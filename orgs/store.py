"""
orgs/store.py -- SQLAlchemy Core persistence for organizations, members and invites.

Pattern: Repository + Data Mapper, sharing the engine and MetaData of
auth.store.UserStore so member and invite queries can join users.

Tables:
  organizations         minimal record (id, name, slug); CRUD is out of scope
  organization_members  (organization_id, user_id) unique, role
  organization_invites  single-use invite tokens; accepted_at is the
                        consumption mark driven by auth.single_use
                        and superseded_at marks an invite replaced by a
                        newer one to the same address

Concurrency: remove_member() folds the "not the last owner" rule into the
DELETE itself, so two concurrent removals of the last two owners cannot both
succeed. Other role checks are read-then-write within one request.

Layer rule: may import from auth/, never from api/.
"""

from __future__ import annotations

from sqlalchemy import Column, String, Table, UniqueConstraint, and_, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.store import metadata, new_id, now_iso
from orgs.models import OWNER, Invite, Member, Organization

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_organizations = Table(
    "organizations",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("slug", String(100), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
)

_members = Table(
    "organization_members",
    metadata,
    Column("organization_id", String(32), nullable=False, index=True),
    Column("user_id", String(32), nullable=False, index=True),
    Column("role", String(20), nullable=False),
    Column("joined_at", String(32), nullable=False),
    UniqueConstraint("organization_id", "user_id", name="uq_org_member"),
)

invites = Table(
    "organization_invites",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("organization_id", String(32), nullable=False, index=True),
    Column("email", String(255), nullable=False),
    Column("role", String(20), nullable=False),
    Column("invited_by", String(32), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("accepted_at", String(32)),
    Column("superseded_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_users = metadata.tables["users"]


class OrgStore:
    """Repository for organizations, memberships and invites."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine, tables=[_organizations, _members, invites])

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def create_organization(self, name: str, slug: str, owner_id: str) -> Organization:
        """Insert an organization and its first owner in one transaction."""
        org = Organization(id=new_id(), name=name, slug=slug, created_at=now_iso())
        with self.engine.begin() as conn:
            conn.execute(_organizations.insert().values(id=org.id, name=name, slug=slug, created_at=org.created_at))
            conn.execute(
                _members.insert().values(
                    organization_id=org.id, user_id=owner_id, role=OWNER, joined_at=org.created_at
                )
            )
        return org

    def get_organization(self, org_id: str) -> Organization | None:
        with self.engine.connect() as conn:
            row = conn.execute(_organizations.select().where(_organizations.c.id == org_id)).fetchone()
        if row is None:
            return None
        return Organization(id=row.id, name=row.name, slug=row.slug, created_at=row.created_at)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def get_role(self, org_id: str, user_id: str) -> str | None:
        """Return the user's role in an existing organization, or None."""
        with self.engine.connect() as conn:
            return conn.execute(
                select(_members.c.role)
                .select_from(_members.join(_organizations, _organizations.c.id == _members.c.organization_id))
                .where((_members.c.organization_id == org_id) & (_members.c.user_id == user_id))
            ).scalar()

    def add_member(self, org_id: str, user_id: str, role: str) -> bool:
        """Add a membership. Returns False if the user was already a member."""
        if self.get_role(org_id, user_id) is not None:
            return False
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _members.insert().values(organization_id=org_id, user_id=user_id, role=role, joined_at=now_iso())
                )
        except IntegrityError:
            # Concurrent insert of the same membership won the unique constraint.
            return False
        return True

    def list_members(self, org_id: str) -> list[Member]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_members, _users.c.name, _users.c.email)
                .select_from(_members.join(_users, _users.c.id == _members.c.user_id))
                .where(_members.c.organization_id == org_id)
                .order_by(_members.c.joined_at)
            ).fetchall()
        return [_row_to_member(r) for r in rows]

    def count_owners(self, org_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_members)
                .where((_members.c.organization_id == org_id) & (_members.c.role == OWNER))
            ).scalar()
        return result or 0

    def has_member_email(self, org_id: str, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_members.c.user_id)
                .select_from(_members.join(_users, _users.c.id == _members.c.user_id))
                .where((_members.c.organization_id == org_id) & (_users.c.email == email.lower()))
            ).fetchone()
        return row is not None

    def remove_member(self, org_id: str, user_id: str) -> bool:
        """Delete a membership unless it is the organization's last owner.

        Returns False if nothing was deleted: either no such member, or the
        member is the only remaining owner.
        """
        other = _members.alias("owners")
        owner_count = (
            select(func.count())
            .select_from(other)
            .where((other.c.organization_id == org_id) & (other.c.role == OWNER))
            .scalar_subquery()
        )
        with self.engine.connect() as conn:
            result = conn.execute(
                _members.delete().where(
                    and_(
                        _members.c.organization_id == org_id,
                        _members.c.user_id == user_id,
                        or_(_members.c.role != OWNER, owner_count > 1),
                    )
                )
            )
            conn.commit()
        return result.rowcount > 0

    def update_member_role(self, org_id: str, user_id: str, role: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _members.update()
                .where((_members.c.organization_id == org_id) & (_members.c.user_id == user_id))
                .values(role=role)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Invites
    # ------------------------------------------------------------------

    def get_invite(self, invite_id: str) -> Invite | None:
        with self.engine.connect() as conn:
            row = conn.execute(invites.select().where(invites.c.id == invite_id)).fetchone()
        return _row_to_invite(row) if row is not None else None

    def list_pending_invites(self, org_id: str) -> list[Invite]:
        """Unaccepted, unsuperseded, unexpired invites with the inviter's name (newest first)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(invites, _users.c.name.label("invited_by_name"))
                .select_from(invites.join(_users, _users.c.id == invites.c.invited_by))
                .where(
                    (invites.c.organization_id == org_id)
                    & invites.c.accepted_at.is_(None)
                    & invites.c.superseded_at.is_(None)
                    & (invites.c.expires_at > now_iso())
                )
                .order_by(invites.c.created_at.desc())
            ).fetchall()
        return [_row_to_invite(r) for r in rows]

    def delete_invite(self, org_id: str, invite_id: str) -> bool:
        """Delete an unaccepted invite. Accepted invites are kept as history; superseded ones may go."""
        with self.engine.connect() as conn:
            result = conn.execute(
                invites.delete().where(
                    (invites.c.id == invite_id)
                    & (invites.c.organization_id == org_id)
                    & invites.c.accepted_at.is_(None)
                )
            )
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_member(row) -> Member:
    return Member(
        organization_id=row.organization_id,
        user_id=row.user_id,
        role=row.role,
        name=row.name,
        email=row.email,
        joined_at=row.joined_at,
    )


def _row_to_invite(row) -> Invite:
    mapping = row._mapping
    return Invite(
        id=row.id,
        organization_id=row.organization_id,
        email=row.email,
        role=row.role,
        invited_by=row.invited_by,
        expires_at=row.expires_at,
        created_at=row.created_at,
        accepted_at=row.accepted_at,
        superseded_at=row.superseded_at,
        invited_by_name=mapping.get("invited_by_name") or "",
    )
