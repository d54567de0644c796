"""
records/store.py -- SQLAlchemy-backed persistence layer for overtime entries.

Uses SQLAlchemy Core (not ORM) so the dataclasses in records/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. OvertimeStore is the repository;
_row_to_entry is the mapper. Route handlers never touch SQL directly, and
this store never decides who may see a row -- callers apply auth/policy.py
before reading or writing.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = OvertimeStore("sqlite:///overtime.db")
    entry_id = store.create_entry(OvertimeEntry(user_id=1, date="2024-05-02", hours=2.5))
    entries = store.list_entries(EntryFilter(user_ids=[1], month=5, year=2024))
    store.close()
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, create_engine, event, func
from sqlalchemy.engine import Engine

from records.models import EntryFilter, OvertimeEntry

MAX_HOURS = 24.0
MAX_DESCRIPTION = 500

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_entries = Table(
    "overtime_entries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("date", String(10), nullable=False),  # YYYY-MM-DD
    Column("hours", Float, nullable=False),
    Column("description", String(MAX_DESCRIPTION), nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_entry_fields(date_str: str, hours: float) -> str:
    """Normalize and validate the user-editable fields of an entry.

    Returns the date as YYYY-MM-DD. Raises ValueError with a user-facing
    message for an unparseable date or hours outside (0, 24].
    """
    try:
        parsed = date.fromisoformat(date_str.strip())
    except ValueError as exc:
        raise ValueError("Invalid date format.") from exc
    if not 0 < hours <= MAX_HOURS:
        raise ValueError("Invalid hours (must be between 0 and 24).")
    return parsed.isoformat()


def _month_bounds(year: int, month: int) -> tuple[str, str]:
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start.isoformat(), end.isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class OvertimeStore:
    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def create_entry(self, entry: OvertimeEntry) -> int:
        """Insert a new entry and return its ID. Fields are validated first."""
        entry_date = validate_entry_fields(entry.date, entry.hours)
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _entries.insert().values(
                    user_id=entry.user_id,
                    date=entry_date,
                    hours=entry.hours,
                    description=entry.description[:MAX_DESCRIPTION],
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_entry(self, entry_id: int) -> Optional[OvertimeEntry]:
        with self.engine.connect() as conn:
            row = conn.execute(_entries.select().where(_entries.c.id == entry_id)).fetchone()
        return _row_to_entry(row) if row is not None else None

    def update_entry(self, entry_id: int, date_str: str, hours: float, description: str) -> bool:
        """Replace the editable fields of an entry. Ownership never changes.

        Returns True if a row was updated, False if entry_id was not found.
        """
        entry_date = validate_entry_fields(date_str, hours)
        with self.engine.connect() as conn:
            result = conn.execute(
                _entries.update()
                .where(_entries.c.id == entry_id)
                .values(
                    date=entry_date,
                    hours=hours,
                    description=description[:MAX_DESCRIPTION],
                    updated_at=_now_iso(),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def delete_entry(self, entry_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_entries.delete().where(_entries.c.id == entry_id))
            conn.commit()
        return result.rowcount > 0

    def list_entries(self, filt: Optional[EntryFilter] = None) -> list[OvertimeEntry]:
        """Return entries matching the filter, ordered by date.

        Newest first by default; oldest first (then by user) for exports.
        """
        filt = filt or EntryFilter()
        query = _entries.select()

        if filt.user_ids is not None:
            if not filt.user_ids:
                return []
            query = query.where(_entries.c.user_id.in_(filt.user_ids))

        if filt.month and filt.year:
            start, end = _month_bounds(filt.year, filt.month)
            query = query.where((_entries.c.date >= start) & (_entries.c.date < end))
        elif filt.month:
            query = query.where(func.substr(_entries.c.date, 6, 2) == f"{filt.month:02d}")
        elif filt.year:
            query = query.where(
                (_entries.c.date >= date(filt.year, 1, 1).isoformat())
                & (_entries.c.date < date(filt.year + 1, 1, 1).isoformat())
            )

        if filt.newest_first:
            query = query.order_by(_entries.c.date.desc(), _entries.c.id.desc())
        else:
            query = query.order_by(_entries.c.date.asc(), _entries.c.user_id.asc())
        if filt.limit:
            query = query.limit(filt.limit)

        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_entry(row) -> OvertimeEntry:
    return OvertimeEntry(
        id=row.id,
        user_id=row.user_id,
        date=row.date,
        hours=row.hours,
        description=row.description or "",
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
