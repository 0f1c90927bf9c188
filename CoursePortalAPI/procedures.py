"""
Store procedures.

These are the portal's remote procedures (roster check, late-day claim and
grant, attendance summaries, public board, TA allowlist and password). Each
one runs in a single transaction on the session it is given and is the sole
writer of the rows it creates; callers may pre-validate, but the checks here
are authoritative.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from CoursePortalAPI.constants import (
    AVAILABILITY_ARCHIVED,
    AVAILABILITY_AWAITING_DEADLINE,
    AVAILABILITY_CLOSED,
    MIN_TA_PASSWORD_LENGTH,
    STATUS_ABSENT,
)
from CoursePortalAPI.errors import ProcedureError
from CoursePortalAPI.late_days import as_utc, classify_assignment, compute_balance, extend_deadline, utcnow
from CoursePortalAPI.models import (
    Attendance,
    ClassSession,
    LateDayAdjustment,
    LateDayAssignment,
    LateDayClaim,
    RosterStudent,
    TaAllowlist,
)

logger = logging.getLogger(__name__)


def _is_whole_positive(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def check_roster(db: Session, erp: str) -> Dict[str, Any]:
    """
    Look up an ERP on the roster.

    Returns:
        dict: {"found": bool, "student_name": str, "class_no": str}.
    """
    student = db.query(RosterStudent).filter(RosterStudent.erp == (erp or "").strip()).first()
    if not student:
        return {"found": False, "student_name": None, "class_no": None}
    return {"found": True, "student_name": student.student_name, "class_no": student.class_no}


def check_ta_allowlist(db: Session, email: Optional[str]) -> bool:
    if not email:
        return False
    entry = (
        db.query(TaAllowlist)
        .filter(func.lower(TaAllowlist.email) == email.strip().lower(), TaAllowlist.active.is_(True))
        .first()
    )
    return entry is not None


def load_student_late_days(db: Session, student_erp: str):
    """
    Read everything the late-day view of one student needs.

    Returns:
        tuple: (assignments, claims, adjustments); assignments active first then
        by due date, claims and adjustments newest first.
    """
    assignments = (
        db.query(LateDayAssignment)
        .order_by(LateDayAssignment.active.desc(), LateDayAssignment.due_at.asc().nulls_last(), LateDayAssignment.id)
        .all()
    )
    claims = (
        db.query(LateDayClaim)
        .filter(LateDayClaim.student_erp == student_erp)
        .order_by(LateDayClaim.claimed_at.desc(), LateDayClaim.id.desc())
        .all()
    )
    adjustments = (
        db.query(LateDayAdjustment)
        .filter(LateDayAdjustment.student_erp == student_erp)
        .order_by(LateDayAdjustment.created_at.desc(), LateDayAdjustment.id.desc())
        .all()
    )
    return assignments, claims, adjustments


def claim_late_days(
    db: Session,
    student_email: str,
    student_erp: str,
    assignment_id: int,
    days: Any,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Spend late days on an assignment.

    The assignment row is locked for the duration of the transaction so two
    concurrent claims by the same student cannot both pass the balance check.
    The new deadline is the effective deadline plus `days * 24h`.

    Args:
        db (Session): The database session.
        student_email (str): Email of the claiming account.
        student_erp (str): ERP of the claiming student.
        assignment_id (int): Assignment to claim against.
        days (int): Whole days to claim.
        now (datetime, optional): Claim time, defaults to the current UTC time.

    Returns:
        dict: {"success", "claim", "remaining_late_days", "total_allowance"}.

    Raises:
        ProcedureError: If the claim is not allowed.
    """
    now = as_utc(now) or utcnow()
    if not _is_whole_positive(days):
        raise ProcedureError("Days must be a whole number greater than 0.", code="invalid_days")

    try:
        assignment = (
            db.query(LateDayAssignment)
            .filter(LateDayAssignment.id == assignment_id)
            .with_for_update()
            .first()
        )
        if not assignment:
            raise ProcedureError("Assignment not found.", code="assignment_not_found")

        claims = db.query(LateDayClaim).filter(LateDayClaim.student_erp == student_erp).all()
        adjustments = db.query(LateDayAdjustment).filter(LateDayAdjustment.student_erp == student_erp).all()
        balance = compute_balance(claims, adjustments)
        availability = classify_assignment(assignment, claims, balance.remaining, now)

        if availability.state == AVAILABILITY_ARCHIVED:
            raise ProcedureError("This assignment is archived.", code="assignment_archived")
        if availability.state == AVAILABILITY_AWAITING_DEADLINE:
            raise ProcedureError("This assignment does not have a deadline yet.", code="assignment_no_deadline")
        if availability.state == AVAILABILITY_CLOSED:
            raise ProcedureError("The deadline for this assignment has already passed.", code="assignment_closed")
        if days > balance.remaining:
            raise ProcedureError(
                f"Not enough late days remaining ({balance.remaining} left).", code="insufficient_late_days"
            )

        before = availability.effective_due_at
        claim = LateDayClaim(
            assignment_id=assignment.id,
            student_email=student_email,
            student_erp=student_erp,
            days_used=days,
            claimed_at=now,
            due_at_before_claim=before,
            due_at_after_claim=extend_deadline(before, days),
        )
        db.add(claim)
        db.commit()
        db.refresh(claim)
    except ProcedureError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("claim_late_days failed for %s", student_erp)
        raise ProcedureError("Failed to record the late-day claim.", code="late_days_claim_failed") from exc

    logger.info("Late-day claim %s: %s spent %s day(s) on assignment %s", claim.id, student_erp, days, assignment.id)
    return {
        "success": True,
        "claim": claim,
        "remaining_late_days": balance.remaining - days,
        "total_allowance": balance.total_allowance,
    }


def ta_add_late_day(db: Session, ta_email: str, student_erp: str, days: Any, reason: Optional[str] = None) -> Dict[str, Any]:
    """
    Grant bonus late days to a roster student.

    Returns:
        dict: {"success", "adjustment", "remaining_late_days", "total_allowance"}.

    Raises:
        ProcedureError: If days is not a positive whole number or the ERP is not on the roster.
    """
    if not _is_whole_positive(days):
        raise ProcedureError("Days must be a whole number greater than 0.", code="invalid_days")
    erp = (student_erp or "").strip()
    if not db.query(RosterStudent).filter(RosterStudent.erp == erp).first():
        raise ProcedureError("Student not found on roster.", code="student_not_found")

    reason = (reason or "").strip() or None
    adjustment = LateDayAdjustment(student_erp=erp, days_delta=days, reason=reason, created_by_email=ta_email)
    try:
        db.add(adjustment)
        db.commit()
        db.refresh(adjustment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise ProcedureError("Failed to add late days.", code="late_days_ta_add_failed") from exc

    claims = db.query(LateDayClaim).filter(LateDayClaim.student_erp == erp).all()
    adjustments = db.query(LateDayAdjustment).filter(LateDayAdjustment.student_erp == erp).all()
    balance = compute_balance(claims, adjustments)
    logger.info("%s granted %s late day(s) to %s", ta_email, days, erp)
    return {
        "success": True,
        "adjustment": adjustment,
        "remaining_late_days": balance.remaining,
        "total_allowance": balance.total_allowance,
    }


def get_student_attendance(db: Session, student_erp: str) -> Dict[str, Any]:
    """
    Attendance history of one student, ordered by session number.

    Returns:
        dict: {"records": [...], "total_absences": int, "total_naming_penalties": int}.
    """
    rows = (
        db.query(Attendance, ClassSession)
        .join(ClassSession, ClassSession.id == Attendance.session_id)
        .filter(Attendance.erp == student_erp)
        .order_by(ClassSession.session_number.asc())
        .all()
    )
    records = [
        {
            "session_id": session.id,
            "session_number": session.session_number,
            "session_date": session.session_date.isoformat() if session.session_date else "",
            "day_of_week": session.day_of_week,
            "status": row.status,
            "naming_penalty": bool(row.naming_penalty),
        }
        for row, session in rows
    ]
    return {
        "records": records,
        "total_absences": sum(1 for r in records if r["status"] == STATUS_ABSENT),
        "total_naming_penalties": sum(1 for r in records if r["naming_penalty"]),
    }


def get_public_attendance_board(db: Session) -> Dict[str, Any]:
    """
    Build the public attendance board for every roster student.

    Returns:
        dict: {"sessions": [...], "students": [...]} where each student has
        `session_status` keyed by session id, totals and penalty entries.
    """
    sessions = db.query(ClassSession).order_by(ClassSession.session_number.asc()).all()
    roster = db.query(RosterStudent).order_by(RosterStudent.class_no, RosterStudent.student_name).all()
    session_by_id = {s.id: s for s in sessions}

    by_erp: Dict[str, Dict[str, Any]] = {
        student.erp: {
            "class_no": student.class_no,
            "student_name": student.student_name,
            "erp": student.erp,
            "total_penalties": 0,
            "total_absences": 0,
            "session_status": {},
            "penalty_entries": [],
        }
        for student in roster
    }

    for row in db.query(Attendance).all():
        entry = by_erp.get(row.erp)
        session = session_by_id.get(row.session_id)
        if entry is None or session is None:
            continue
        entry["session_status"][str(session.id)] = row.status
        if row.status == STATUS_ABSENT:
            entry["total_absences"] += 1
        if row.naming_penalty:
            entry["total_penalties"] += 1
            entry["penalty_entries"].append(
                {
                    "session_id": str(session.id),
                    "session_number": session.session_number,
                    "session_date": session.session_date.isoformat() if session.session_date else "",
                    "day_of_week": session.day_of_week,
                    "details": None,
                }
            )

    for entry in by_erp.values():
        entry["penalty_entries"].sort(key=lambda e: e["session_number"])

    return {
        "sessions": [
            {
                "id": str(s.id),
                "session_number": s.session_number,
                "session_date": s.session_date.isoformat() if s.session_date else "",
                "day_of_week": s.day_of_week,
            }
            for s in sessions
        ],
        "students": list(by_erp.values()),
    }


def _allowlist_entry(db: Session, email: str) -> TaAllowlist:
    entry = (
        db.query(TaAllowlist)
        .filter(func.lower(TaAllowlist.email) == (email or "").strip().lower(), TaAllowlist.active.is_(True))
        .first()
    )
    if not entry:
        raise ProcedureError("Not an allowlisted TA.", code="ta_not_allowlisted")
    return entry


def get_my_ta_password(db: Session, email: str) -> Optional[str]:
    return _allowlist_entry(db, email).initial_password


def set_my_ta_password(db: Session, email: str, new_password: str) -> None:
    """
    Store a TA's new password on their allowlist entry.

    Raises:
        ProcedureError: If the password is too short or the caller is not an allowlisted TA.
    """
    if not new_password or len(new_password) < MIN_TA_PASSWORD_LENGTH:
        raise ProcedureError(
            f"Password must be at least {MIN_TA_PASSWORD_LENGTH} characters.", code="ta_password_too_short"
        )
    entry = _allowlist_entry(db, email)
    entry.initial_password = new_password
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise ProcedureError("Failed to sync the TA password.", code="ta_password_sync_failed") from exc
