"""
records/export.py -- Monthly overtime CSV export.

Security background: spreadsheet applications treat a cell starting with =,
+, -, or @ as a formula (CWE-1236). Employee names and descriptions are user
supplied, so every text cell goes through _sanitize_csv_cell(), which
prefixes such values with a tab to force text interpretation.
"""

import csv
import io
import re
from collections.abc import Mapping

from records.models import OvertimeEntry

_FORMULA_PREFIXES = ("=", "+", "-", "@")

CSV_HEADERS = ["Employee", "Team", "Project", "Date", "Hours", "Description"]


def _sanitize_csv_cell(value: str) -> str:
    if value and value.startswith(_FORMULA_PREFIXES):
        return "\t" + value
    return value


_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def export_filename(year: int, month: int, *scope: str) -> str:
    """Build the download name, e.g. overtime_2024_05.csv or overtime_Ops_Apollo_2024_05.csv.

    scope names (team, project) are reduced to filename-safe characters so
    they cannot break out of the Content-Disposition header.
    """
    parts = [_UNSAFE_FILENAME_CHARS.sub("-", name).strip("-") or "unnamed" for name in scope]
    return "_".join(["overtime", *parts, str(year), f"{month:02d}"]) + ".csv"


def entries_to_csv(
    entries: list[OvertimeEntry],
    people: Mapping[int, tuple[str, str, str]],
) -> str:
    """Render entries as CSV.

    people maps user_id -> (display name, team name, project name). A user
    missing from the map (deleted since the entry was written) is exported
    as "user #<id>" with blank team and project.
    """
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_HEADERS)
    for entry in entries:
        name, team, project = people.get(entry.user_id, (f"user #{entry.user_id}", "", ""))
        writer.writerow(
            [
                _sanitize_csv_cell(name),
                _sanitize_csv_cell(team),
                _sanitize_csv_cell(project),
                entry.date,
                f"{entry.hours:.2f}",
                _sanitize_csv_cell(entry.description),
            ]
        )
    return buf.getvalue()
