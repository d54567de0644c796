"""
records/models.py -- Domain dataclasses for overtime records.

These are pure data containers with zero logic. Who may read or change a
record is decided by auth/policy.py; storage lives in records/store.py.

Separation of concerns: records/ knows user IDs, not users. Resolving a team
or project to the user IDs it covers is the caller's job, so this layer
never imports auth/.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class OvertimeEntry:
    """Overtime worked by one user on one day.

    date is an ISO 8601 date string (YYYY-MM-DD); hours is in (0, 24].
    id is None before the record is written to the database.
    """

    user_id: int
    date: str
    hours: float
    description: str = ""
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""  # ISO 8601, set by store on insert and update


@dataclass
class EntryFilter:
    """Filter for OvertimeStore.list_entries().

    user_ids=None means "everyone"; an empty list matches nothing. month and
    year are independent: month alone matches that month in every year.
    """

    user_ids: Optional[list[int]] = None
    month: Optional[int] = None
    year: Optional[int] = None
    limit: Optional[int] = None
    newest_first: bool = True
