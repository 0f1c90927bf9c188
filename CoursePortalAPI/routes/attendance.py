import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from CoursePortalAPI import config
from CoursePortalAPI.attendance import (
    apply_ta_test_student_to_board,
    build_bulk_rows,
    build_export_table,
    build_snapshot_payload,
    check_overwrite,
    next_status,
    normalize_public_attendance_board_data,
    parse_absent_list,
    read_test_student_settings,
    render_csv,
)
from CoursePortalAPI.change_feed import change_feed
from CoursePortalAPI.constants import STATUS_ABSENT
from CoursePortalAPI.database import get_db
from CoursePortalAPI.errors import NotFoundError
from CoursePortalAPI.models import Attendance, ClassSession, RosterStudent
from CoursePortalAPI.notify_service import send_ntfy_notification
from CoursePortalAPI.procedures import get_public_attendance_board, get_student_attendance
from CoursePortalAPI.routes.auth import StudentIdentity, require_student, require_ta
from CoursePortalAPI.routes.settings import get_app_settings
from CoursePortalAPI.schemas import (
    AttendanceResponse,
    AttendanceStatusUpdate,
    BulkMarkRequest,
    BulkMarkResponse,
    PenaltyUpdate,
    PublicBoardResponse,
    SheetSyncResponse,
    StudentAttendanceResponse,
)
from CoursePortalAPI.sheets_client import SheetSyncError, post_to_google_sheet, save_to_google_sheet
from CoursePortalAPI.zoom_client import normalize_zoom_session_report

logger = logging.getLogger(__name__)

router = APIRouter()


def _attendance_payload(row: Attendance) -> dict:
    return {
        "id": row.id,
        "session_id": row.session_id,
        "erp": row.erp,
        "status": row.status,
        "naming_penalty": bool(row.naming_penalty),
    }


def _attendance_response(row: Attendance) -> dict:
    payload = _attendance_payload(row)
    payload["student_name"] = row.student.student_name if row.student else None
    payload["class_no"] = row.student.class_no if row.student else None
    return payload


def _snapshot_payload(db: Session, source: str) -> dict:
    board = normalize_public_attendance_board_data(get_public_attendance_board(db))
    return build_snapshot_payload(board, source=source)


def _schedule_sheet_sync(db: Session, background_tasks: BackgroundTasks, source: str) -> None:
    if not config.SHEET_AUTO_SYNC:
        return
    background_tasks.add_task(save_to_google_sheet, _snapshot_payload(db, source))


def _get_row_or_404(db: Session, attendance_id: int) -> Attendance:
    row = db.query(Attendance).filter(Attendance.id == attendance_id).first()
    if not row:
        raise NotFoundError("Attendance record not found")
    return row


@router.get("/sessions/{session_id}/attendance", response_model=List[AttendanceResponse])
def list_session_attendance(session_id: int, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    rows = db.query(Attendance).filter(Attendance.session_id == session_id).order_by(Attendance.erp).all()
    return [_attendance_response(row) for row in rows]


@router.post("/sessions/{session_id}/attendance/bulk", response_model=BulkMarkResponse)
def bulk_mark_attendance(
    session_id: int,
    payload: BulkMarkRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """
    Mark a whole session from a pasted absentee list.

    Every roster student gets exactly one row: absent when their ERP is in the
    list, present otherwise. Existing rows are deleted first, which requires
    `overwrite`. The delete and the insert are separate commits, so a failed
    insert leaves the session unmarked.

    Args:
        session_id (int): The session to mark.
        payload (BulkMarkRequest): Absentee text, overwrite flag and an optional Zoom report.
        background_tasks (BackgroundTasks): Runs the notification after the response.
        db (Session): The database session.
        ta_email (str): The signed-in TA.

    Returns:
        BulkMarkResponse: Counts of the rows written.

    Raises:
        ConfirmationRequired: Rows exist and `overwrite` is false (409).
    """
    session = db.query(ClassSession).filter(ClassSession.id == session_id).first()
    if not session:
        raise NotFoundError("Session not found")

    existing = db.query(Attendance).filter(Attendance.session_id == session_id).count()
    overwrite = check_overwrite(existing, payload.overwrite)

    roster = db.query(RosterStudent).order_by(RosterStudent.erp).all()
    absent = parse_absent_list(payload.absent_text)
    rows = build_bulk_rows(session_id, roster, absent)
    known = {student.erp.lower() for student in roster}

    if overwrite:
        db.query(Attendance).filter(Attendance.session_id == session_id).delete(synchronize_session=False)
        db.commit()
    try:
        db.add_all([Attendance(**row) for row in rows])
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Attendance insert failed for session %s: %s", session_id, e)
        raise HTTPException(status_code=400, detail=f"Failed to mark attendance: {e}")

    zoom_report_saved = False
    if payload.zoom_report is not None:
        session.zoom_report = normalize_zoom_session_report(payload.zoom_report)
        session.zoom_report_saved_at = datetime.now(timezone.utc)
        db.commit()
        zoom_report_saved = True

    absent_count = sum(1 for row in rows if row["status"] == STATUS_ABSENT)
    present_count = len(rows) - absent_count
    mode = "overwrite" if overwrite else "initial"
    logger.info("%s marked session %s (%s): %s present, %s absent", ta_email, session.session_number, mode, present_count, absent_count)

    message = "\n".join(
        [
            "Event: Attendance Posted",
            f"Session: #{session.session_number} ({session.session_date:%B %d, %Y})",
            f"Mode: {mode}",
            f"Present: {present_count}",
            f"Absent: {absent_count}",
            f"Timestamp: {datetime.now(timezone.utc).isoformat()}",
        ]
    )
    background_tasks.add_task(send_ntfy_notification, "Attendance Posted", message, ["attendance", "ta"], 3)
    change_feed.publish_nowait(
        "attendance",
        "INSERT",
        new={"session_id": session_id, "marked": len(rows), "mode": mode},
    )
    _schedule_sheet_sync(db, background_tasks, "attendance_marking_submit")

    return {
        "session_id": session_id,
        "marked": len(rows),
        "present": present_count,
        "absent": absent_count,
        "overwritten": overwrite,
        "zoom_report_saved": zoom_report_saved,
        "unmatched": sorted(absent - known),
    }


@router.post("/attendance/{attendance_id}/cycle", response_model=AttendanceResponse)
def cycle_attendance_status(
    attendance_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """Advance one row present -> absent -> excused -> present."""
    row = _get_row_or_404(db, attendance_id)
    old = _attendance_payload(row)
    row.status = next_status(row.status)
    db.commit()
    db.refresh(row)
    change_feed.publish_nowait("attendance", "UPDATE", new=_attendance_payload(row), old=old)
    _schedule_sheet_sync(db, background_tasks, "attendance_status_toggle")
    return _attendance_response(row)


@router.put("/attendance/{attendance_id}/status", response_model=AttendanceResponse)
def set_attendance_status(
    attendance_id: int,
    payload: AttendanceStatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    row = _get_row_or_404(db, attendance_id)
    old = _attendance_payload(row)
    row.status = payload.status
    db.commit()
    db.refresh(row)
    change_feed.publish_nowait("attendance", "UPDATE", new=_attendance_payload(row), old=old)
    _schedule_sheet_sync(db, background_tasks, "attendance_status_set")
    return _attendance_response(row)


@router.put("/attendance/{attendance_id}/penalty", response_model=AttendanceResponse)
def set_naming_penalty(
    attendance_id: int,
    payload: PenaltyUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """Set or clear the naming penalty of one row. The status is left alone."""
    row = _get_row_or_404(db, attendance_id)
    old = _attendance_payload(row)
    row.naming_penalty = payload.naming_penalty
    db.commit()
    db.refresh(row)
    change_feed.publish_nowait("attendance", "UPDATE", new=_attendance_payload(row), old=old)
    _schedule_sheet_sync(db, background_tasks, "attendance_penalty_toggle")
    return _attendance_response(row)


@router.get("/attendance/me", response_model=StudentAttendanceResponse)
def get_my_attendance(db: Session = Depends(get_db), student: StudentIdentity = Depends(require_student)):
    return get_student_attendance(db, student.erp)


@router.get("/attendance/export.csv")
def export_attendance_csv(
    include_penalties: bool = Query(True),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """
    Download the attendance sheet as CSV.

    Args:
        include_penalties (bool): Add the Naming Penalties column.
        db (Session): The database session.
        ta_email (str): The signed-in TA.

    Returns:
        Response: text/csv attachment.
    """
    table = build_export_table(
        db.query(RosterStudent).all(),
        db.query(ClassSession).all(),
        db.query(Attendance).all(),
        include_penalties=include_penalties,
    )
    filename = f"attendance_{datetime.now(timezone.utc):%Y-%m-%d}.csv"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=render_csv(table), media_type="text/csv", headers=headers)


@router.post("/attendance/sync-sheet", response_model=SheetSyncResponse)
def sync_attendance_sheet(db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    """
    Push the public attendance snapshot to the Google Sheet now.

    Raises:
        HTTPException: 502 if the Apps Script webhook fails.
    """
    payload = _snapshot_payload(db, "portal_sync")
    try:
        post_to_google_sheet(payload)
    except SheetSyncError as e:
        logger.warning("Manual sheet sync failed: %s", e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    metadata = payload["metadata"]
    return {"success": True, "students": metadata["students"], "sessions": metadata["sessions"]}


@router.get("/ta/attendance-board", response_model=PublicBoardResponse)
def read_ta_attendance_board(db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    """
    The consolidated board TAs see: the public board with the test student
    shown (with its overrides) or hidden per the app settings.
    """
    board = normalize_public_attendance_board_data(get_public_attendance_board(db))
    return apply_ta_test_student_to_board(board, read_test_student_settings(get_app_settings(db)))
