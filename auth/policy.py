"""
auth/policy.py -- Permission Policy: pure predicates over the live identity.

These functions never touch the request, the token, or the database. Handlers
pass in the User resolved by the gate chain, so a role change in the store
takes effect on the very next request even though older tokens still carry
the previous role claim.

Every predicate matches exhaustively on Role and ends in assert_never, so a
type checker flags each function that needs a decision when a role is added.

Layer rule: no imports from api/, web/, core/, or records/.
"""

from __future__ import annotations

from typing import assert_never

from auth.models import Role, User

# Route-level allow-lists for the role gate. Handlers still call the matching
# predicate for row-level decisions.
VIEW_ALL_ROLES: tuple[Role, ...] = (Role.ADMIN, Role.HR)
EXPORT_ROLES: tuple[Role, ...] = (Role.ADMIN, Role.HR)
INVITE_ROLES: tuple[Role, ...] = (Role.ADMIN,)
SUPERVISOR_ADMIN_ROLES: tuple[Role, ...] = (Role.ADMIN,)
TEAM_OVERSIGHT_ROLES: tuple[Role, ...] = (Role.SUPERVISOR,)


def can_manage_record_of(actor: User, owner_id: int) -> bool:
    """Admins manage anyone's records; everyone else only their own."""
    match actor.role:
        case Role.ADMIN:
            return True
        case Role.HR | Role.EMPLOYEE | Role.SUPERVISOR:
            return actor.id == owner_id
        case _ as unreachable:
            assert_never(unreachable)


def can_view_all_records(actor: User) -> bool:
    match actor.role:
        case Role.ADMIN | Role.HR:
            return True
        case Role.EMPLOYEE | Role.SUPERVISOR:
            return False
        case _ as unreachable:
            assert_never(unreachable)


def can_export(actor: User) -> bool:
    match actor.role:
        case Role.ADMIN | Role.HR:
            return True
        case Role.EMPLOYEE | Role.SUPERVISOR:
            return False
        case _ as unreachable:
            assert_never(unreachable)


def can_create_invites(actor: User) -> bool:
    match actor.role:
        case Role.ADMIN:
            return True
        case Role.HR | Role.EMPLOYEE | Role.SUPERVISOR:
            return False
        case _ as unreachable:
            assert_never(unreachable)


def can_assign_records(actor: User) -> bool:
    """Whether the actor may pick another user as the owner of a new entry."""
    match actor.role:
        case Role.ADMIN:
            return True
        case Role.HR | Role.EMPLOYEE | Role.SUPERVISOR:
            return False
        case _ as unreachable:
            assert_never(unreachable)


def can_manage_supervisors(actor: User) -> bool:
    """Whether the actor may assign supervisors to teams and remove assignments."""
    match actor.role:
        case Role.ADMIN:
            return True
        case Role.HR | Role.EMPLOYEE | Role.SUPERVISOR:
            return False
        case _ as unreachable:
            assert_never(unreachable)


def can_oversee_teams(actor: User) -> bool:
    """Whether the actor may be assigned teams and see their overtime.

    Oversight is limited to the assigned teams inside the actor's own project;
    the handlers resolve that scope.
    """
    match actor.role:
        case Role.SUPERVISOR:
            return True
        case Role.ADMIN | Role.HR | Role.EMPLOYEE:
            return False
        case _ as unreachable:
            assert_never(unreachable)
