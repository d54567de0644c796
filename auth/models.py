"""
auth/models.py -- Domain types for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and routes
do the work; the Permission Policy in auth/policy.py makes the decisions.

Role is a closed Enum. Strings coming from the database, a form, or a token
claim are parsed into Role at that boundary (Role(value)) and a ValueError is
the signal for "not a role". Nothing past the boundary compares role strings.

Layer rule: no imports from api/, web/, core/, or records/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    HR = "HR"
    EMPLOYEE = "EMPLOYEE"
    SUPERVISOR = "SUPERVISOR"

    @property
    def label(self) -> str:
        return self.value.title() if self is not Role.HR else "HR"


# Roles an admin may hand out through an invite. ADMIN accounts are seeded or
# promoted, never self-registered.
INVITABLE_ROLES: tuple[Role, ...] = (Role.EMPLOYEE, Role.HR, Role.SUPERVISOR)


@dataclass
class User:
    """An identity in the Credential Store.

    The token carried by the client is only a cache of these attributes at
    issue time. Authorization always reads role and must_change_password from
    the live record.
    """

    username: str
    role: Role
    id: int | None = None
    full_name: str = ""
    hashed_password: str | None = None
    must_change_password: bool = True
    team_id: int | None = None
    project_id: int | None = None
    created_at: str | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.username


@dataclass(frozen=True)
class SessionClaims:
    """Decoded, verified payload of a session token. Never persisted."""

    user_id: int
    username: str
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass
class Invite:
    """A single-use, time-bounded onboarding code that pre-assigns a role.

    Valid iff used is False and now < expires_at. auth/invites.py owns that
    rule; the dataclass only exposes is_valid_at() so the check reads the same
    everywhere it is evaluated.
    """

    code: str
    role: Role
    created_by: int
    expires_at: datetime
    id: int | None = None
    full_name: str = ""
    team_id: int | None = None
    project_id: int | None = None
    used: bool = False
    created_at: str | None = None

    def is_valid_at(self, now: datetime) -> bool:
        return not self.used and now < self.expires_at


@dataclass
class Team:
    name: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class Project:
    name: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class TeamSupervisor:
    """A team a SUPERVISOR may oversee, within the supervisor's own project."""

    user_id: int
    team_id: int
    id: int | None = None
    created_at: str | None = None
