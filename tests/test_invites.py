"""
tests/test_invites.py -- Unit tests for the Invite Ledger.

All tests run against a real UserStore (in-memory SQLite) with an injected
clock, so expiry is exercised without sleeping.

Coverage:
  - create: 64-hex code, role/affiliation carried, window from config, ADMIN refused
  - validate: true iff unused and unexpired; the order NotFound > AlreadyUsed > Expired
  - consume: flips once, second consume raises AlreadyUsed
  - redeem: creates the account with the invite's role and consumes the code;
    any credential failure leaves the invite untouched
"""

from __future__ import annotations

import re
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AlreadyUsed,
    EntropyUnavailable,
    InviteExpired,
    InviteNotFound,
    MismatchConfirmation,
    UsernameTaken,
    WeakPassword,
)
from auth.invites import InviteLedger, UnknownAffiliation, generate_code
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password, verify_password

WEEK = 7 * 24 * 60 * 60


@pytest.fixture
def admin_id(user_store: UserStore) -> int:
    return user_store.create_user(
        User(username="admin", role=Role.ADMIN, hashed_password=hash_password("admin-pass"), must_change_password=False)
    )


@pytest.fixture
def ledger(user_store: UserStore, clock) -> InviteLedger:
    return InviteLedger(user_store, WEEK, clock=clock)


class TestCreate:
    def test_code_is_64_hex_chars(self, ledger: InviteLedger, admin_id: int) -> None:
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        assert re.fullmatch(r"[0-9a-f]{64}", invite.code)
        assert invite.id is not None

    def test_codes_are_unique(self, ledger: InviteLedger, admin_id: int) -> None:
        codes = {ledger.create(admin_id, Role.EMPLOYEE).code for _ in range(5)}
        assert len(codes) == 5

    def test_expiry_uses_configured_window(self, ledger: InviteLedger, admin_id: int, clock) -> None:
        invite = ledger.create(admin_id, Role.HR)
        assert invite.expires_at == clock.now + timedelta(seconds=WEEK)

    def test_custom_ttl(self, ledger: InviteLedger, admin_id: int, clock) -> None:
        invite = ledger.create(admin_id, Role.HR, ttl=timedelta(hours=1))
        assert invite.expires_at == clock.now + timedelta(hours=1)

    def test_persists_role_and_affiliation(self, ledger: InviteLedger, admin_id: int, user_store: UserStore) -> None:
        team_id = user_store.create_team("Platform")
        invite = ledger.create(admin_id, Role.SUPERVISOR, full_name="  Sam Lee ", team_id=team_id)
        stored = user_store.get_invite_by_code(invite.code)
        assert stored is not None
        assert stored.role is Role.SUPERVISOR
        assert stored.full_name == "Sam Lee"
        assert stored.team_id == team_id
        assert stored.used is False
        assert stored.created_by == admin_id

    def test_admin_role_cannot_be_invited(self, ledger: InviteLedger, admin_id: int) -> None:
        with pytest.raises(ValueError):
            ledger.create(admin_id, Role.ADMIN)

    def test_unknown_team_or_project_refused(self, ledger: InviteLedger, admin_id: int) -> None:
        with pytest.raises(UnknownAffiliation, match="Unknown team."):
            ledger.create(admin_id, Role.EMPLOYEE, team_id=999)
        with pytest.raises(UnknownAffiliation, match="Unknown project."):
            ledger.create(admin_id, Role.EMPLOYEE, project_id=999)
        assert ledger.list_for_creator(admin_id) == []

    def test_entropy_failure(self) -> None:
        with patch("auth.invites.secrets.token_hex", side_effect=OSError("no entropy")):
            with pytest.raises(EntropyUnavailable):
                generate_code()


class TestValidate:
    def test_fresh_invite_is_valid(self, ledger: InviteLedger, admin_id: int) -> None:
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        assert ledger.validate(invite.code).id == invite.id
        assert ledger.is_valid(invite)

    @pytest.mark.parametrize("code", ["", "deadbeef", "0" * 64])
    def test_unknown_code(self, ledger: InviteLedger, code: str) -> None:
        with pytest.raises(InviteNotFound):
            ledger.validate(code)

    def test_valid_until_just_before_expiry(self, ledger: InviteLedger, admin_id: int, clock) -> None:
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        clock.advance(seconds=WEEK - 1)
        ledger.validate(invite.code)

    def test_expired_at_expiry(self, ledger: InviteLedger, admin_id: int, clock) -> None:
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        clock.advance(seconds=WEEK)
        with pytest.raises(InviteExpired):
            ledger.validate(invite.code)

    def test_day_eight_is_expired_and_unused(self, ledger: InviteLedger, admin_id: int, clock, user_store) -> None:
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        clock.advance(days=8)
        with pytest.raises(InviteExpired):
            ledger.redeem(invite.code, "late", "secret1", "secret1")
        assert user_store.get_invite_by_code(invite.code).used is False
        assert user_store.get_by_username("late") is None

    def test_used_takes_precedence_over_expired(self, ledger: InviteLedger, admin_id: int, clock) -> None:
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        ledger.consume(invite)
        clock.advance(days=30)
        with pytest.raises(AlreadyUsed):
            ledger.validate(invite.code)


class TestConsume:
    def test_consume_is_permanent(self, ledger: InviteLedger, admin_id: int, clock) -> None:
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        ledger.consume(invite)
        assert invite.used is True
        for _ in range(3):
            with pytest.raises(AlreadyUsed):
                ledger.validate(invite.code)
            clock.advance(hours=1)

    def test_second_consume_fails(self, ledger: InviteLedger, admin_id: int, user_store: UserStore) -> None:
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        stale_copy = user_store.get_invite_by_code(invite.code)
        ledger.consume(invite)
        with pytest.raises(AlreadyUsed):
            ledger.consume(stale_copy)


class TestRedeem:
    def test_creates_user_with_invite_role(self, ledger: InviteLedger, admin_id: int, user_store: UserStore) -> None:
        project_id = user_store.create_project("Billing")
        invite = ledger.create(admin_id, Role.HR, full_name="Rita", project_id=project_id)

        user = ledger.redeem(invite.code, "  rita ", "secret1", "secret1")

        stored = user_store.get_by_username("rita")
        assert stored is not None
        assert stored.id == user.id
        assert stored.role is Role.HR
        assert stored.full_name == "Rita"
        assert stored.project_id == project_id
        assert stored.must_change_password is False
        assert verify_password("secret1", stored.hashed_password)
        assert user_store.get_invite_by_code(invite.code).used is True

    def test_redeeming_twice_fails(self, ledger: InviteLedger, admin_id: int, user_store: UserStore) -> None:
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        ledger.redeem(invite.code, "first", "secret1", "secret1")
        with pytest.raises(AlreadyUsed):
            ledger.redeem(invite.code, "second", "secret1", "secret1")
        assert user_store.get_by_username("second") is None

    def test_concurrent_loser_writes_nothing(self, ledger: InviteLedger, admin_id: int, user_store: UserStore) -> None:
        """A redemption that validated before another one committed still loses."""
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        assert user_store.mark_invite_used(invite.id)  # the other request won
        assert user_store.redeem_invite(invite.id, User(username="loser", role=Role.EMPLOYEE, hashed_password="x")) is None
        assert user_store.get_by_username("loser") is None

    def test_taken_username_leaves_invite_unused(
        self, ledger: InviteLedger, admin_id: int, user_store: UserStore
    ) -> None:
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        with pytest.raises(UsernameTaken):
            ledger.redeem(invite.code, "admin", "secret1", "secret1")
        assert user_store.get_invite_by_code(invite.code).used is False

    def test_unique_constraint_rolls_back_consumption(
        self, ledger: InviteLedger, admin_id: int, user_store: UserStore
    ) -> None:
        """If the username appears between the pre-check and the insert, the flip is undone."""
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        with pytest.raises(IntegrityError):
            user_store.redeem_invite(invite.id, User(username="admin", role=Role.EMPLOYEE, hashed_password="x"))
        assert user_store.get_invite_by_code(invite.code).used is False

    def test_mismatched_passwords_leave_invite_unused(
        self, ledger: InviteLedger, admin_id: int, user_store: UserStore
    ) -> None:
        invite = ledger.create(admin_id, Role.EMPLOYEE)
        with pytest.raises(MismatchConfirmation):
            ledger.redeem(invite.code, "carol", "secret1", "secret2")
        with pytest.raises(WeakPassword):
            ledger.redeem(invite.code, "carol", "abc", "abc")
        assert user_store.get_invite_by_code(invite.code).used is False
        assert ledger.redeem(invite.code, "carol", "secret1", "secret1").username == "carol"

    def test_list_for_creator_newest_first(self, ledger: InviteLedger, admin_id: int) -> None:
        first = ledger.create(admin_id, Role.EMPLOYEE)
        second = ledger.create(admin_id, Role.HR)
        assert [i.id for i in ledger.list_for_creator(admin_id)] == [second.id, first.id]
        assert ledger.list_for_creator(admin_id + 100) == []
