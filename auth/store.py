"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as records/store.py).
UserStore is the repository; the _row_to_* functions are the mappers.
Route and dependency code never touches SQL directly.

Entities: users (the Credential Store), invites (backing the Invite Ledger),
teams and projects (optional affiliations of a user or an invite), and
team_supervisors (which teams a SUPERVISOR oversees).

Security:
  All queries use bound parameters. No f-strings in SQL.

  redeem_invite() is the only multi-statement write. It runs inside a single
  engine.begin() transaction: the invite is flipped to used with a
  conditional UPDATE (WHERE used = 0), then the user row is inserted. If the
  insert fails the UPDATE is rolled back, and if another request flipped the
  invite first the UPDATE matches zero rows and nothing is written.

DB URL: core.config Settings.database_url (SQLite file by default).

Layer rule: no imports from api/, web/, core/, or records/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Invite, Project, Role, Team, TeamSupervisor, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(100), nullable=False, unique=True),
    Column("full_name", String(200), nullable=False, server_default=""),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False),
    Column("must_change_password", Integer, nullable=False, server_default="1"),
    Column("team_id", Integer),
    Column("project_id", Integer),
    Column("created_at", String(32), nullable=False),
)

_invites = Table(
    "invites",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(64), nullable=False, unique=True),
    Column("full_name", String(200), nullable=False, server_default=""),
    Column("role", String(20), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_by", Integer, nullable=False),
    Column("expires_at", String(32), nullable=False),  # ISO 8601, UTC
    Column("team_id", Integer),
    Column("project_id", Integer),
    Column("created_at", String(32), nullable=False),
)

_teams = Table(
    "teams",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
)

_projects = Table(
    "projects",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
)

_team_supervisors = Table(
    "team_supervisors",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("team_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "team_id"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_dt(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Invite, Team, Project and TeamSupervisor entities.

    Usage:
        store = UserStore("sqlite:///overtime.db")
        uid = store.create_user(User(username="alice", role=Role.EMPLOYEE, hashed_password=hash_password("pw")))
        user = store.get_by_id(uid)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.insert().values(**_user_values(user)))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: full_name, role, must_change_password, hashed_password,
        team_id, project_id. role may be passed as a Role; must_change_password
        as bool.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "must_change_password" in fields:
            fields["must_change_password"] = 1 if fields["must_change_password"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_password(self, user_id: int, hashed_password: str) -> bool:
        """Store a new password hash and clear the forced-change flag."""
        return self.update_user(user_id, hashed_password=hashed_password, must_change_password=False)

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted.

        Tokens already issued to the user stop working on their next request:
        the gate chain cannot resolve the identity any more. Supervisor team
        assignments go with the user.
        """
        with self.engine.begin() as conn:
            conn.execute(_team_supervisors.delete().where(_team_supervisors.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def seed_default_admin(self, username: str, hashed_password: str) -> bool:
        """Create the bootstrap admin if that username does not exist yet.

        The account is created with must_change_password=True. Returns True if
        a row was inserted.
        """
        if self.get_by_username(username) is not None:
            return False
        self.create_user(
            User(
                username=username,
                full_name="Administrator",
                role=Role.ADMIN,
                hashed_password=hashed_password,
                must_change_password=True,
            )
        )
        return True

    # ------------------------------------------------------------------
    # Invite queries
    # ------------------------------------------------------------------

    def create_invite(self, invite: Invite) -> int:
        """Insert a new invite and return its ID. Raises IntegrityError on a duplicate code."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _invites.insert().values(
                    code=invite.code,
                    full_name=invite.full_name,
                    role=invite.role.value,
                    used=1 if invite.used else 0,
                    created_by=invite.created_by,
                    expires_at=invite.expires_at.isoformat(),
                    team_id=invite.team_id,
                    project_id=invite.project_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_invite_by_code(self, code: str) -> Invite | None:
        with self.engine.connect() as conn:
            row = conn.execute(_invites.select().where(_invites.c.code == code)).fetchone()
        return _row_to_invite(row) if row is not None else None

    def list_invites_by_creator(self, creator_id: int) -> list[Invite]:
        """Return invites created by the given user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _invites.select()
                .where(_invites.c.created_by == creator_id)
                .order_by(_invites.c.created_at.desc(), _invites.c.id.desc())
            ).fetchall()
        return [_row_to_invite(r) for r in rows]

    def mark_invite_used(self, invite_id: int) -> bool:
        """Flip an unused invite to used. Returns False if it was already used (or missing)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _invites.update().where((_invites.c.id == invite_id) & (_invites.c.used == 0)).values(used=1)
            )
            conn.commit()
        return result.rowcount > 0

    def redeem_invite(self, invite_id: int, user: User) -> int | None:
        """Consume an invite and create its user in one transaction.

        Returns the new user ID, or None if the invite had already been
        consumed (nothing is written in that case). Raises IntegrityError if
        the username is taken; the invite is left unconsumed.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _invites.update().where((_invites.c.id == invite_id) & (_invites.c.used == 0)).values(used=1)
            )
            if result.rowcount == 0:
                return None
            inserted = conn.execute(_users.insert().values(**_user_values(user)))
            return inserted.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Teams and projects
    # ------------------------------------------------------------------

    def create_team(self, name: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_teams.insert().values(name=name, created_at=_now_iso()))
            conn.commit()
            return result.inserted_primary_key[0]

    def list_teams(self) -> list[Team]:
        with self.engine.connect() as conn:
            rows = conn.execute(_teams.select().order_by(_teams.c.name)).fetchall()
        return [Team(id=r.id, name=r.name, created_at=r.created_at) for r in rows]

    def create_project(self, name: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_projects.insert().values(name=name, created_at=_now_iso()))
            conn.commit()
            return result.inserted_primary_key[0]

    def list_projects(self) -> list[Project]:
        with self.engine.connect() as conn:
            rows = conn.execute(_projects.select().order_by(_projects.c.name)).fetchall()
        return [Project(id=r.id, name=r.name, created_at=r.created_at) for r in rows]

    def get_team(self, team_id: int) -> Team | None:
        with self.engine.connect() as conn:
            row = conn.execute(_teams.select().where(_teams.c.id == team_id)).fetchone()
        return Team(id=row.id, name=row.name, created_at=row.created_at) if row is not None else None

    def get_project(self, project_id: int) -> Project | None:
        with self.engine.connect() as conn:
            row = conn.execute(_projects.select().where(_projects.c.id == project_id)).fetchone()
        return Project(id=row.id, name=row.name, created_at=row.created_at) if row is not None else None

    # ------------------------------------------------------------------
    # Supervisor team assignments
    # ------------------------------------------------------------------

    def assign_supervisor(self, user_id: int, team_id: int) -> int:
        """Record that user_id supervises team_id. Raises IntegrityError if already assigned."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _team_supervisors.insert().values(user_id=user_id, team_id=team_id, created_at=_now_iso())
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def remove_supervisor_assignment(self, assignment_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_team_supervisors.delete().where(_team_supervisors.c.id == assignment_id))
            conn.commit()
        return result.rowcount > 0

    def list_supervisor_assignments(self) -> list[TeamSupervisor]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _team_supervisors.select().order_by(_team_supervisors.c.user_id, _team_supervisors.c.team_id)
            ).fetchall()
        return [_row_to_assignment(r) for r in rows]

    def supervised_team_ids(self, user_id: int) -> list[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_team_supervisors.c.team_id)
                .where(_team_supervisors.c.user_id == user_id)
                .order_by(_team_supervisors.c.team_id)
            ).fetchall()
        return [r.team_id for r in rows]

    def list_users_with_role(self, role: Role) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.role == Role(role).value).order_by(_users.c.username)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _user_values(user: User) -> dict:
    return {
        "username": user.username,
        "full_name": user.full_name,
        "hashed_password": user.hashed_password,
        "role": user.role.value,
        "must_change_password": 1 if user.must_change_password else 0,
        "team_id": user.team_id,
        "project_id": user.project_id,
        "created_at": _now_iso(),
    }


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        full_name=row.full_name or "",
        hashed_password=row.hashed_password,
        role=Role(row.role),
        must_change_password=bool(row.must_change_password),
        team_id=row.team_id,
        project_id=row.project_id,
        created_at=row.created_at,
    )


def _row_to_invite(row) -> Invite:
    return Invite(
        id=row.id,
        code=row.code,
        full_name=row.full_name or "",
        role=Role(row.role),
        used=bool(row.used),
        created_by=row.created_by,
        expires_at=_parse_dt(row.expires_at),
        team_id=row.team_id,
        project_id=row.project_id,
        created_at=row.created_at,
    )


def _row_to_assignment(row) -> TeamSupervisor:
    return TeamSupervisor(id=row.id, user_id=row.user_id, team_id=row.team_id, created_at=row.created_at)
