"""
API request and response models for the overtime tracker REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
records/models.py, which own the internal domain representation. Route
handlers map between the two.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Invite, Role, User

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


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
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=255)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
    role: Role
    must_change_password: bool


class MeResponse(BaseModel):
    user_id: int
    username: str
    full_name: str
    role: Role
    must_change_password: bool
    team_id: Optional[int] = None
    project_id: Optional[int] = None

    @classmethod
    def from_user(cls, user: User) -> "MeResponse":
        return cls(
            user_id=user.id,
            username=user.username,
            full_name=user.full_name,
            role=user.role,
            must_change_password=user.must_change_password,
            team_id=user.team_id,
            project_id=user.project_id,
        )


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------


class InviteCreate(BaseModel):
    """Request body for POST /api/v1/invites. ADMIN is rejected by the ledger."""

    model_config = ConfigDict(str_strip_whitespace=True)

    role: Role
    full_name: str = Field(default="", max_length=200)
    team_id: Optional[int] = None
    project_id: Optional[int] = None


class InviteResponse(BaseModel):
    """An invite as shown to its creator. The code is included: admins share the link."""

    id: int
    code: str
    role: Role
    full_name: str
    team_id: Optional[int]
    project_id: Optional[int]
    used: bool
    expires_at: datetime
    register_path: str

    @classmethod
    def from_invite(cls, invite: Invite) -> "InviteResponse":
        return cls(
            id=invite.id,
            code=invite.code,
            role=invite.role,
            full_name=invite.full_name,
            team_id=invite.team_id,
            project_id=invite.project_id,
            used=invite.used,
            expires_at=invite.expires_at,
            register_path=f"/register?code={invite.code}",
        )


class InviteStatusResponse(BaseModel):
    """Public validity check for an invite code. Reveals nothing but the role."""

    valid: bool
    role: Optional[Role] = None
    reason: Optional[str] = None
