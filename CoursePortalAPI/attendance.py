"""
Attendance rules: bulk marking from an absentee list, the manual status
cycle, public board normalization with the TA test student, the sheet
snapshot payload and the CSV export.
"""

import csv
import io
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from CoursePortalAPI.constants import (
    ATTENDANCE_STATUS_CYCLE,
    DEFAULT_TEST_STUDENT_CLASS_NO,
    DEFAULT_TEST_STUDENT_NAME,
    PUBLIC_ATTENDANCE_SHEET_NAME,
    PUBLIC_ATTENDANCE_SNAPSHOT_TYPE,
    STATUS_ABSENT,
    STATUS_PRESENT,
    STATUS_SYMBOLS,
    TEST_STUDENT_ERP,
    UNMARKED_SYMBOL,
)
from CoursePortalAPI.errors import ConfirmationRequired

OVERWRITE_WARNING = (
    "Attendance has already been marked for this session. "
    "Proceeding will overwrite all statuses based on the new absentee list."
)

_SEPARATORS = re.compile(r"[\s,]+")


def parse_absent_list(text: Optional[str]) -> Set[str]:
    """
    Parse a pasted absentee list.

    Identifiers may be separated by any mix of whitespace and commas and are
    compared case-insensitively.

    Args:
        text (str): Raw text from the TA.

    Returns:
        set[str]: Lower-cased identifiers.
    """
    if not text:
        return set()
    return {token for token in _SEPARATORS.split(text.lower()) if token.strip()}


def build_bulk_rows(session_id: Any, roster: Iterable[Any], absent: Set[str]) -> List[Dict[str, Any]]:
    """
    Build one attendance row per roster student.

    A student is absent if their ERP is in `absent` (lower-cased), present
    otherwise. Bulk marking never produces `excused`.
    """
    return [
        {
            "session_id": session_id,
            "erp": student.erp,
            "status": STATUS_ABSENT if student.erp.lower() in absent else STATUS_PRESENT,
            "naming_penalty": False,
        }
        for student in roster
    ]


def check_overwrite(existing_count: int, confirmed: bool) -> bool:
    """
    Decide whether a bulk mark replaces existing rows.

    Returns:
        bool: True when existing rows must be deleted first.

    Raises:
        ConfirmationRequired: Rows exist and the overwrite was not confirmed.
    """
    if existing_count > 0 and not confirmed:
        raise ConfirmationRequired(OVERWRITE_WARNING)
    return existing_count > 0


def next_status(current: str) -> str:
    """Advance present -> absent -> excused -> present."""
    if current not in ATTENDANCE_STATUS_CYCLE:
        return ATTENDANCE_STATUS_CYCLE[0]
    index = ATTENDANCE_STATUS_CYCLE.index(current)
    return ATTENDANCE_STATUS_CYCLE[(index + 1) % len(ATTENDANCE_STATUS_CYCLE)]


def status_symbol(status: Optional[str]) -> str:
    return STATUS_SYMBOLS.get(status, UNMARKED_SYMBOL)


def _to_text(value: Any) -> str:
    return "" if value is None else str(value)


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)) and math.isfinite(value):
        return value
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(parsed):
        return 0
    return int(parsed) if parsed.is_integer() else parsed


def _to_object_or_none(value: Any) -> Optional[Dict[str, Any]]:
    return value if isinstance(value, dict) else None


def _normalize_penalty_entries(raw: Any) -> List[Dict[str, Any]]:
    entries = [
        {
            "session_id": _to_text(entry.get("session_id")),
            "session_number": _to_number(entry.get("session_number")),
            "session_date": _to_text(entry.get("session_date")),
            "day_of_week": _to_text(entry.get("day_of_week")),
            "details": _to_object_or_none(entry.get("details")),
        }
        for entry in (raw if isinstance(raw, list) else [])
        if isinstance(entry, dict)
    ]
    entries = [entry for entry in entries if entry["session_id"] != ""]
    entries.sort(key=lambda entry: entry["session_number"])
    return entries


def normalize_public_attendance_board_data(payload: Any) -> Dict[str, List[Dict[str, Any]]]:
    """
    Coerce a public board payload into a well-formed board.

    Sessions are sorted ascending by session_number. Sessions without an id
    and students without an ERP are dropped; penalty entries get the same
    treatment per student.

    Args:
        payload: Whatever the board procedure returned.

    Returns:
        dict: {"sessions": [...], "students": [...]}.
    """
    raw = payload if isinstance(payload, dict) else {}

    raw_sessions = raw.get("sessions") if isinstance(raw.get("sessions"), list) else []
    sessions = [
        {
            "id": _to_text(session.get("id")),
            "session_number": _to_number(session.get("session_number")),
            "session_date": _to_text(session.get("session_date")),
            "day_of_week": _to_text(session.get("day_of_week")),
        }
        for session in raw_sessions
        if isinstance(session, dict)
    ]
    sessions = [session for session in sessions if session["id"] != ""]
    sessions.sort(key=lambda session: session["session_number"])

    raw_students = raw.get("students") if isinstance(raw.get("students"), list) else []
    students = []
    for student in raw_students:
        if not isinstance(student, dict):
            continue
        normalized = {
            "class_no": _to_text(student.get("class_no")),
            "student_name": _to_text(student.get("student_name")),
            "erp": _to_text(student.get("erp")),
            "total_penalties": _to_number(student.get("total_penalties")),
            "total_absences": _to_number(student.get("total_absences")),
            "session_status": student.get("session_status") if isinstance(student.get("session_status"), dict) else {},
            "penalty_entries": _normalize_penalty_entries(student.get("penalty_entries")),
        }
        if normalized["erp"] != "":
            students.append(normalized)

    return {"sessions": sessions, "students": students}


def hide_test_student(board: Dict[str, List[Dict[str, Any]]]) -> Dict[str, List[Dict[str, Any]]]:
    """Drop the TA test student from a board before it is shown publicly."""
    students = [s for s in board.get("students", []) if s.get("erp") != TEST_STUDENT_ERP]
    return dict(board, students=students)


@dataclass
class TaTestStudentSettings:
    """
    How the test student appears on TA attendance views.

    Attributes:
        show_in_ta (bool): Whether TA views list the test student at all.
        overrides (dict): Field values that replace the test student's real ones.
    """
    show_in_ta: bool = False
    overrides: Dict[str, Any] = field(default_factory=dict)


def read_test_student_settings(settings: Any) -> TaTestStudentSettings:
    overrides = getattr(settings, "test_student_overrides", None)
    return TaTestStudentSettings(
        show_in_ta=bool(getattr(settings, "show_test_student_in_ta", False)),
        overrides=overrides if isinstance(overrides, dict) else {},
    )


def _non_negative(value: Any, fallback: float) -> float:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(parsed):
        return fallback
    parsed = max(0.0, parsed)
    return int(parsed) if parsed.is_integer() else parsed


def _string_statuses(value: Dict[Any, Any]) -> Dict[str, str]:
    return {str(key): status for key, status in value.items() if isinstance(status, str)}


def _natural_key(text: str) -> List[Any]:
    # "2" sorts before "10"; digit runs sit at odd indexes so parts always compare like with like
    return [int(part) if i % 2 else part.casefold() for i, part in enumerate(re.split(r"(\d+)", text))]


def _board_order(student: Dict[str, Any]):
    return _natural_key(_to_text(student.get("class_no"))), _to_text(student.get("student_name")).casefold()


def normalize_test_student_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Clean test student overrides before they are saved.

    Blank names fall back to the defaults, counts are clamped at zero and the
    ERP is always the reserved test ERP.

    Args:
        raw (dict): Overrides as submitted by a TA.

    Returns:
        dict: The overrides to store.

    Raises:
        ValueError: session_status is not an object or penalty_entries is not a list.
    """
    session_status = raw.get("session_status")
    if session_status is None:
        session_status = {}
    if not isinstance(session_status, dict):
        raise ValueError("Session status must be an object")
    penalty_entries = raw.get("penalty_entries")
    if penalty_entries is None:
        penalty_entries = []
    if not isinstance(penalty_entries, list):
        raise ValueError("Penalty entries must be an array")

    return {
        "erp": TEST_STUDENT_ERP,
        "class_no": _to_text(raw.get("class_no")).strip() or DEFAULT_TEST_STUDENT_CLASS_NO,
        "student_name": _to_text(raw.get("student_name")).strip() or DEFAULT_TEST_STUDENT_NAME,
        "total_absences": _non_negative(raw.get("total_absences"), 0),
        "total_penalties": _non_negative(raw.get("total_penalties"), 0),
        "session_status": _string_statuses(session_status),
        "penalty_entries": penalty_entries,
    }


def build_test_student(overrides: Dict[str, Any], existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    base = existing or {
        "class_no": DEFAULT_TEST_STUDENT_CLASS_NO,
        "student_name": DEFAULT_TEST_STUDENT_NAME,
        "erp": TEST_STUDENT_ERP,
        "total_penalties": 0,
        "total_absences": 0,
        "session_status": {},
        "penalty_entries": [],
    }
    session_status = base["session_status"]
    if "session_status" in overrides:
        raw_status = overrides["session_status"]
        session_status = _string_statuses(raw_status) if isinstance(raw_status, dict) else {}
    penalty_entries = base["penalty_entries"]
    if "penalty_entries" in overrides:
        penalty_entries = _normalize_penalty_entries(overrides["penalty_entries"])

    return {
        "class_no": _to_text(overrides["class_no"]) if overrides.get("class_no") is not None else base["class_no"],
        "student_name": (
            _to_text(overrides["student_name"]) if overrides.get("student_name") is not None else base["student_name"]
        ),
        "erp": TEST_STUDENT_ERP,
        "total_penalties": _non_negative(overrides.get("total_penalties"), base["total_penalties"]),
        "total_absences": _non_negative(overrides.get("total_absences"), base["total_absences"]),
        "session_status": session_status,
        "penalty_entries": penalty_entries,
    }


def apply_ta_test_student_to_board(
    board: Dict[str, List[Dict[str, Any]]], settings: TaTestStudentSettings
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Show or hide the test student on a TA board.

    Hidden, the test student is simply removed. Shown, it is rebuilt from its
    real board entry (or the defaults when it has none) with the overrides
    applied, and the students are re-sorted by class number then name.

    Args:
        board (dict): A normalized attendance board.
        settings (TaTestStudentSettings): The TA test student settings.

    Returns:
        dict: The board TAs see.
    """
    students = board.get("students", [])
    others = [s for s in students if s.get("erp") != TEST_STUDENT_ERP]
    if not settings.show_in_ta:
        return dict(board, students=others)

    existing = next((s for s in students if s.get("erp") == TEST_STUDENT_ERP), None)
    test_student = build_test_student(settings.overrides, existing)
    return dict(board, students=sorted(others + [test_student], key=_board_order))


def build_snapshot_payload(board: Dict[str, List[Dict[str, Any]]], source: str = "portal_sync", generated_at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Build the sheet snapshot posted to the Apps Script webhook.

    The TA test student never reaches the sheet.

    Args:
        board (dict): A normalized public board.
        source (str): Label recorded in the metadata.
        generated_at (datetime, optional): Timestamp, defaults to now (UTC).

    Returns:
        dict: {type, target_sheet, generated_at, headers, rows, metadata}.
    """
    sessions = board.get("sessions", [])
    students = hide_test_student(board)["students"]
    headers = ["Class", "Name", "ERP", "Penalties", "Absences"] + [f"S{s['session_number']}" for s in sessions]

    rows = []
    for student in students:
        session_status = student.get("session_status") or {}
        rows.append(
            [
                student.get("class_no"),
                student.get("student_name"),
                student.get("erp"),
                int(student.get("total_penalties") or 0),
                int(student.get("total_absences") or 0),
            ]
            + [status_symbol(session_status.get(str(s["id"]))) for s in sessions]
        )

    stamp = generated_at or datetime.now(timezone.utc)
    return {
        "type": PUBLIC_ATTENDANCE_SNAPSHOT_TYPE,
        "target_sheet": PUBLIC_ATTENDANCE_SHEET_NAME,
        "generated_at": stamp.isoformat().replace("+00:00", "Z"),
        "headers": headers,
        "rows": rows,
        "metadata": {"students": len(students), "sessions": len(sessions), "source": source},
    }


def build_export_table(roster: Iterable[Any], sessions: Iterable[Any], attendance: Iterable[Any], include_penalties: bool = True) -> List[List[Any]]:
    """
    Build the attendance export grid, header first.

    Columns: Class No, Student Name, ERP, [Naming Penalties,] S01..Sn,
    Total Absences. Roster is ordered by ERP and sessions by number.
    Excused counts as attended in the totals but shows as E.
    """
    ordered_sessions = sorted(sessions, key=lambda s: s.session_number)
    ordered_roster = sorted(roster, key=lambda student: student.erp)
    known_sessions = {s.id for s in ordered_sessions}

    statuses: Dict[str, Dict[Any, str]] = {}
    absences: Dict[str, int] = {}
    penalties: Dict[str, int] = {}
    for row in attendance:
        if row.session_id not in known_sessions:
            continue
        statuses.setdefault(row.erp, {})[row.session_id] = row.status
        if row.status == STATUS_ABSENT:
            absences[row.erp] = absences.get(row.erp, 0) + 1
        if row.naming_penalty:
            penalties[row.erp] = penalties.get(row.erp, 0) + 1

    header = ["Class No", "Student Name", "ERP"]
    if include_penalties:
        header.append("Naming Penalties")
    header += [f"S{s.session_number:02d}" for s in ordered_sessions]
    header.append("Total Absences")

    table = [header]
    for student in ordered_roster:
        row = [student.class_no, student.student_name, student.erp]
        if include_penalties:
            count = penalties.get(student.erp, 0)
            row.append(f"-{count}" if count > 0 else UNMARKED_SYMBOL)
        student_statuses = statuses.get(student.erp, {})
        row += [status_symbol(student_statuses.get(s.id)) for s in ordered_sessions]
        row.append(absences.get(student.erp, 0))
        table.append(row)
    return table


def render_csv(table: List[List[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(table)
    return buffer.getvalue()
