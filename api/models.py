"""
API request and response models for the SendRec identity REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
orgs/models.py, which own the internal domain representation. Route handlers
map between the two.

Password length is checked in characters here for a friendly message and in
bytes by auth.accounts.validate_password, because bcrypt only sees the first
72 bytes.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import ApiKey
from orgs.models import Invite, Member

# Deliberately loose: deliverability is decided by the confirmation email.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AssignableRoleEnum(str, Enum):
    admin = "admin"
    member = "member"


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class _EmailBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class RegisterRequest(_EmailBody):
    """Request body for POST /api/auth/register."""

    password: str = Field(min_length=8, max_length=72)
    name: str = Field(min_length=1, max_length=100)


class LoginRequest(_EmailBody):
    # No length rules: a login attempt never reveals the password policy.
    password: str = Field(min_length=1, max_length=1024)


class ForgotPasswordRequest(_EmailBody):
    pass


class ResendConfirmationRequest(_EmailBody):
    pass


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=8, max_length=72)


class ConfirmEmailRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)


# ---------------------------------------------------------------------------
# User request models
# ---------------------------------------------------------------------------


class UserUpdate(BaseModel):
    """Request body for PATCH /api/user. Unset fields are not changed.

    new_password requires current_password; the handler enforces it so the
    error carries a specific message.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    current_password: Optional[str] = Field(default=None, max_length=1024)
    new_password: Optional[str] = Field(default=None, min_length=8, max_length=72)


class ApiKeyCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(default="Untitled", min_length=1, max_length=100)


# ---------------------------------------------------------------------------
# Organization request models
# ---------------------------------------------------------------------------


class InviteCreate(_EmailBody):
    role: AssignableRoleEnum = AssignableRoleEnum.member


class AcceptInviteRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)


class RoleUpdate(BaseModel):
    role: AssignableRoleEnum


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Access token body; the refresh token travels only in its cookie."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class OrgScopeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    organization_id: str
    role: str


class UserResponse(BaseModel):
    """Response for GET/PATCH /api/user."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    email_verified: bool
    created_at: Optional[str] = None
    organization: Optional[OrgScopeResponse] = None


class ApiKeyResponse(BaseModel):
    """An API key as listed. Never includes the key or its digest."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    key_prefix: str
    created_at: Optional[str] = None
    last_used_at: Optional[str] = None

    @classmethod
    def from_key(cls, key: ApiKey) -> "ApiKeyResponse":
        return cls(
            id=key.id,
            name=key.name,
            key_prefix=key.key_prefix,
            created_at=key.created_at,
            last_used_at=key.last_used_at,
        )


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Returned once on creation; `key` is the only time the raw key is shown."""

    key: str


class InviteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str
    email: str
    role: str
    invited_by: str
    invited_by_name: str = ""
    expires_at: str
    created_at: str

    @classmethod
    def from_invite(cls, invite: Invite) -> "InviteResponse":
        return cls(
            id=invite.id,
            organization_id=invite.organization_id,
            email=invite.email,
            role=invite.role,
            invited_by=invite.invited_by,
            invited_by_name=invite.invited_by_name,
            expires_at=invite.expires_at,
            created_at=invite.created_at,
        )


class AcceptInviteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    organization_id: str
    name: str
    slug: str
    role: str
    already_member: bool = False


class MemberResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    name: str
    role: str
    joined_at: Optional[str] = None

    @classmethod
    def from_member(cls, member: Member) -> "MemberResponse":
        return cls(
            user_id=member.user_id,
            email=member.email,
            name=member.name,
            role=member.role,
            joined_at=member.joined_at,
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    components: dict[str, str]
