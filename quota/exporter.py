"""CSV and XLSX serialization of quota boards and rankings."""
from __future__ import annotations

import csv
import io
from typing import Any, Iterable, Sequence

import openpyxl

# (header, row key) pairs
BOARD_COLUMNS = (
    ("Entrepreneurship", "name"),
    ("Beneficiary", "owner_name"),
    ("Average Score", "score"),
    ("Evaluations", "evaluation_count"),
    ("Mentors Assigned", "mentors_assigned"),
    ("Evaluations Submitted", "evaluations_submitted"),
    ("State", "state"),
)
COHORT_COLUMN = ("Cohort", "cohort")

RANKING_COLUMNS = (
    ("Position", "position"),
    ("Entrepreneurship", "name"),
    ("Beneficiary", "owner_name"),
    ("Email", "email"),
    ("Average Score", "score"),
    ("Evaluations", "evaluation_count"),
)

PENDING = "pending"
# XLSX sheet titles are limited to 31 characters
_MAX_SHEET_TITLE = 31


def _cell(key: str, value: Any) -> Any:
    if key == "state":
        return value or PENDING
    if key == "cohort":
        return value if value is not None else "-"
    return "" if value is None else value


def _csv_cell(key: str, value: Any) -> str:
    if key == "score" and value is not None:
        return f"{value:.2f}"
    return str(_cell(key, value))


def board_columns(has_cohorts: bool) -> tuple[tuple[str, str], ...]:
    return (*BOARD_COLUMNS, COHORT_COLUMN) if has_cohorts else BOARD_COLUMNS


def filter_by_state(rows: Iterable[dict], state: str | None) -> list[dict]:
    """Keep rows whose decision state is *state* (``pending`` means no decision yet)."""
    rows = list(rows)
    if not state:
        return rows
    return [r for r in rows if (r.get("state") or PENDING) == state]


def to_csv(rows: Iterable[dict], columns: Sequence[tuple[str, str]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow([header for header, _ in columns])
    for row in rows:
        writer.writerow([_csv_cell(key, row.get(key)) for _, key in columns])
    return buf.getvalue()


def to_xlsx(sheets: dict[str, Iterable[dict]], columns: Sequence[tuple[str, str]]) -> bytes:
    """Write one worksheet per entry of *sheets* (title -> rows) and return the workbook bytes."""
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title=title[:_MAX_SHEET_TITLE])
        ws.append([header for header, _ in columns])
        for row in rows:
            ws.append([_cell(key, row.get(key)) for _, key in columns])
    if not wb.sheetnames:
        wb.create_sheet(title="Empty")
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
