"""
api/routes/v1/invites.py -- Invite administration endpoints.

Routes:
  GET  /api/v1/invites         -- invites created by the caller (ADMIN)
  POST /api/v1/invites         -- create an invite (ADMIN)
  GET  /api/v1/invites/{code}  -- public validity check used by the register page

The role gate (require_user(*INVITE_ROLES)) keeps non-admins out at the route
level; handlers re-check can_create_invites() against the live identity.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import InviteCreate, InviteResponse, InviteStatusResponse
from auth.dependencies import require_user
from auth.errors import EntropyUnavailable, InviteError
from auth.invites import InviteLedger, UnknownAffiliation
from auth.models import User
from auth.policy import INVITE_ROLES, can_create_invites

logger = logging.getLogger("overtime.api")

router = APIRouter()


def _forbidden() -> HTTPException:
    return HTTPException(
        status_code=403,
        detail={"code": "forbidden", "message": "Only admins can manage invites."},
    )


@router.get("/invites", response_model=list[InviteResponse])
def list_invites(
    request: Request,
    current_user: User = Depends(require_user(*INVITE_ROLES)),
) -> list[InviteResponse]:
    """List invites created by the current admin, newest first."""
    if not can_create_invites(current_user):
        raise _forbidden()
    ledger: InviteLedger = request.app.state.invite_ledger
    return [InviteResponse.from_invite(i) for i in ledger.list_for_creator(current_user.id)]


@router.post("/invites", response_model=InviteResponse, status_code=201)
def create_invite(
    request: Request,
    body: InviteCreate,
    current_user: User = Depends(require_user(*INVITE_ROLES)),
) -> InviteResponse:
    """Create a single-use invite. The response carries the code; it is the only secret."""
    if not can_create_invites(current_user):
        raise _forbidden()
    ledger: InviteLedger = request.app.state.invite_ledger
    try:
        invite = ledger.create(
            current_user.id,
            body.role,
            full_name=body.full_name,
            team_id=body.team_id,
            project_id=body.project_id,
        )
    except UnknownAffiliation as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "unknown_affiliation", "message": str(exc)},
        ) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_role", "message": str(exc)},
        ) from exc
    except EntropyUnavailable as exc:
        logger.exception("Invite code generation failed")
        raise HTTPException(
            status_code=503,
            detail={"code": "entropy_unavailable", "message": exc.message},
        ) from exc
    return InviteResponse.from_invite(invite)


@router.get("/invites/{code}", response_model=InviteStatusResponse)
def invite_status(request: Request, code: str) -> InviteStatusResponse:
    """Report whether an invite code can still be redeemed. Public."""
    ledger: InviteLedger = request.app.state.invite_ledger
    try:
        invite = ledger.validate(code)
    except InviteError as exc:
        return InviteStatusResponse(valid=False, reason=exc.message)
    return InviteStatusResponse(valid=True, role=invite.role)
