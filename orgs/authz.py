"""
orgs/authz.py -- Organization-scoped authorization.

Two ways a request gets an organization context:

  get_org_scope()  -- header mode. Reads X-Organization-Id. Absent: the
                      request proceeds unscoped (personal workspace, returns
                      None). Present: the caller must be a member, otherwise
                      403 before the handler runs.
  get_org_role()   -- path mode, for /organizations/{org_id}/... routes. A
                      non-member gets 404 so organization ids cannot be probed.

require_role() is a pure gate over an already-resolved role. Business rules
such as "only owners change roles" or "the last owner stays" are applied by
the individual handlers on top of it, not here.

Layer rule: may import from auth/, never from api/.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.dependencies import get_current_user_id, get_user_id_or_api_key
from auth.errors import Forbidden, NotFound
from orgs.models import OrgScope
from orgs.store import OrgStore

ORG_HEADER = "X-Organization-Id"


def require_role(role: str | None, *allowed: str, message: str = "insufficient permissions") -> str:
    """Return role if it is one of allowed, else raise Forbidden."""
    if role is None or role not in allowed:
        raise Forbidden(message)
    return role


def get_org_scope(request: Request, user_id: str = Depends(get_user_id_or_api_key)) -> OrgScope | None:
    """Resolve the optional X-Organization-Id header into an OrgScope."""
    org_id = request.headers.get(ORG_HEADER, "").strip()
    if not org_id:
        return None
    org_store: OrgStore = request.app.state.org_store
    role = org_store.get_role(org_id, user_id)
    if role is None:
        raise Forbidden("not a member of this organization")
    request.state.org_id = org_id
    request.state.org_role = role
    return OrgScope(organization_id=org_id, role=role)


def get_org_role(org_id: str, request: Request, user_id: str = Depends(get_current_user_id)) -> OrgScope:
    """Resolve the caller's role in the organization named by the path."""
    org_store: OrgStore = request.app.state.org_store
    role = org_store.get_role(org_id, user_id)
    if role is None:
        raise NotFound("organization not found")
    request.state.org_id = org_id
    request.state.org_role = role
    return OrgScope(organization_id=org_id, role=role)
