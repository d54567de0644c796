"""
auth/invites.py -- Invite Ledger: single-use, time-bounded onboarding codes.

An invite is valid iff it has not been used and now < expires_at. Validity is
re-read from the store on every call; invite volume is low, so there is no
caching. The registration page and the registration submit each call
validate() independently because time passes between the two.

redeem() is the one operation that creates an account from an invite. It
validates the code and the chosen credentials, then hands the consume +
create pair to UserStore.redeem_invite(), which runs both writes in a single
transaction. Concurrent redemptions of the same code: the first transaction
to flip `used` wins, the others get AlreadyUsed and write nothing.

Layer rule: no imports from api/, web/, core/, or records/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from auth.errors import AlreadyUsed, EntropyUnavailable, InviteExpired, InviteNotFound, UsernameTaken
from auth.models import INVITABLE_ROLES, Invite, Role, User
from auth.store import UserStore
from auth.tokens import Clock, check_new_password, check_username, hash_password, utcnow

logger = logging.getLogger("overtime.invites")

_CODE_BYTES = 32


class UnknownAffiliation(ValueError):
    """An invite named a team or project that does not exist."""


def generate_code() -> str:
    """Return a new invite code: 32 random bytes from the OS CSPRNG, hex-encoded.

    256 bits of entropy make guessing a live code infeasible. Raises
    EntropyUnavailable if the OS random source fails.
    """
    try:
        return secrets.token_hex(_CODE_BYTES)
    except OSError as exc:
        raise EntropyUnavailable() from exc


class InviteLedger:
    """Creates, validates, consumes and redeems invites.

    Usage:
        ledger = InviteLedger(store, expire_seconds=settings.invite_expire_seconds)
        invite = ledger.create(admin.id, Role.EMPLOYEE, full_name="Jane Doe")
        user = ledger.redeem(invite.code, "jane", "s3cret", "s3cret")
    """

    def __init__(
        self,
        store: UserStore,
        expire_seconds: int,
        *,
        min_username_length: int = 3,
        min_password_length: int = 5,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._expire_seconds = expire_seconds
        self._min_username_length = min_username_length
        self._min_password_length = min_password_length
        self._clock = clock

    def create(
        self,
        creator_id: int,
        role: Role,
        *,
        full_name: str = "",
        team_id: int | None = None,
        project_id: int | None = None,
        ttl: timedelta | None = None,
    ) -> Invite:
        """Persist a new unused invite expiring ttl from now (default: configured window).

        Raises ValueError for a role that cannot be handed out by invite, and
        UnknownAffiliation (a ValueError) for a team or project id that does
        not exist.
        """
        role = Role(role)
        if role not in INVITABLE_ROLES:
            raise ValueError(f"Role {role.value} cannot be assigned through an invite.")
        if team_id is not None and self._store.get_team(team_id) is None:
            raise UnknownAffiliation("Unknown team.")
        if project_id is not None and self._store.get_project(project_id) is None:
            raise UnknownAffiliation("Unknown project.")
        if ttl is None:
            ttl = timedelta(seconds=self._expire_seconds)

        invite = Invite(
            code=generate_code(),
            role=role,
            created_by=creator_id,
            expires_at=self._clock() + ttl,
            full_name=full_name.strip(),
            team_id=team_id,
            project_id=project_id,
        )
        invite.id = self._store.create_invite(invite)
        logger.info("Invite %d created by user %d for role %s", invite.id, creator_id, role.value)
        return invite

    def validate(self, code: str) -> Invite:
        """Return the invite for code if it is still redeemable.

        Raises InviteNotFound, AlreadyUsed, or InviteExpired. A used invite is
        reported as used even after its window has also passed.
        """
        invite = self._store.get_invite_by_code(code) if code else None
        if invite is None:
            raise InviteNotFound()
        if invite.used:
            raise AlreadyUsed()
        if not self._clock() < invite.expires_at:
            raise InviteExpired()
        return invite

    def consume(self, invite: Invite) -> None:
        """Mark the invite used. Raises AlreadyUsed if another writer got there first."""
        if invite.id is None or not self._store.mark_invite_used(invite.id):
            raise AlreadyUsed()
        invite.used = True

    def redeem(self, code: str, username: str, password: str, confirm_password: str) -> User:
        """Create an account from an invite and consume the invite, atomically.

        The new user takes the invite's role, full name, team and project, and
        is not asked to change the password they just chose.

        Raises InviteError subclasses for a bad code and CredentialError
        subclasses for bad form input. In every failure case the invite is
        left exactly as it was.
        """
        invite = self.validate(code)
        username = username.strip()
        check_username(username, self._min_username_length)
        check_new_password(password, confirm_password, self._min_password_length)
        if self._store.get_by_username(username) is not None:
            raise UsernameTaken()

        user = User(
            username=username,
            full_name=invite.full_name,
            role=invite.role,
            hashed_password=hash_password(password),
            must_change_password=False,
            team_id=invite.team_id,
            project_id=invite.project_id,
        )
        try:
            user_id = self._store.redeem_invite(invite.id, user)
        except IntegrityError as exc:
            raise UsernameTaken() from exc
        if user_id is None:
            logger.warning("Invite %d was redeemed concurrently; rejecting second redemption", invite.id)
            raise AlreadyUsed()

        user.id = user_id
        invite.used = True
        logger.info("Invite %d redeemed by new user %d (%s)", invite.id, user_id, user.role.value)
        return user

    def list_for_creator(self, creator_id: int) -> list[Invite]:
        return self._store.list_invites_by_creator(creator_id)

    def is_valid(self, invite: Invite) -> bool:
        return invite.is_valid_at(self._clock())
