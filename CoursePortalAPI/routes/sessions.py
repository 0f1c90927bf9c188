import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from CoursePortalAPI.database import get_db
from CoursePortalAPI.errors import NotFoundError, ValidationError
from CoursePortalAPI.models import ClassSession
from CoursePortalAPI.routes.auth import require_confirmation, require_ta
from CoursePortalAPI.schemas import SessionCreate, SessionResponse, SessionUpdate, ZoomReportResponse, ZoomReportSave
from CoursePortalAPI.zoom_client import normalize_zoom_session_report

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_session_or_404(db: Session, session_id: int) -> ClassSession:
    session = db.query(ClassSession).filter(ClassSession.id == session_id).first()
    if not session:
        raise NotFoundError("Session not found")
    return session


@router.get("/sessions", response_model=List[SessionResponse])
def list_sessions(db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    return db.query(ClassSession).order_by(ClassSession.session_number.desc()).all()


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def create_session(payload: SessionCreate, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    """
    Create a class session.

    The day of week defaults to the weekday of `session_date`.

    Raises:
        HTTPException: 400 if the session number is already taken.
    """
    data = payload.model_dump()
    data["day_of_week"] = (data.get("day_of_week") or "").strip() or payload.session_date.strftime("%A")
    session = ClassSession(**data)
    try:
        db.add(session)
        db.commit()
        db.refresh(session)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Session {payload.session_number} already exists")
    logger.info("%s created session %s", ta_email, session.session_number)
    return session


@router.put("/sessions/{session_id}", response_model=SessionResponse)
def update_session(
    session_id: int,
    payload: SessionUpdate,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    session = _get_session_or_404(db, session_id)
    update_data = payload.model_dump(exclude_unset=True)
    if "session_number" in update_data and (update_data["session_number"] or 0) < 1:
        raise ValidationError("Session number must be at least 1")
    for key, value in update_data.items():
        setattr(session, key, value)
    try:
        db.commit()
        db.refresh(session)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Session {update_data.get('session_number')} already exists")
    return session


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(
    session_id: int,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """Delete a session together with its attendance rows."""
    session = _get_session_or_404(db, session_id)
    require_confirmation(
        confirm,
        f"Delete Session {session.session_number}? This will also delete all attendance records for this session.",
    )
    number = session.session_number
    db.delete(session)
    db.commit()
    logger.info("%s deleted session %s", ta_email, number)
    return None


@router.get("/sessions/{session_id}/zoom-report", response_model=ZoomReportResponse)
def get_zoom_report(session_id: int, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    session = _get_session_or_404(db, session_id)
    return {
        "session_id": session.id,
        "zoom_report": session.zoom_report,
        "zoom_report_saved_at": session.zoom_report_saved_at,
    }


@router.put("/sessions/{session_id}/zoom-report", response_model=ZoomReportResponse)
def save_zoom_report(
    session_id: int,
    payload: ZoomReportSave,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """
    Store a processed Zoom report on a session, replacing any earlier one.

    Args:
        session_id (int): The session.
        payload (ZoomReportSave): The report as returned by the Zoom processor.
        db (Session): The database session.
        ta_email (str): The signed-in TA.

    Returns:
        ZoomReportResponse: The normalized report as stored.
    """
    session = _get_session_or_404(db, session_id)
    session.zoom_report = normalize_zoom_session_report(payload.report)
    session.zoom_report_saved_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(session)
    return {
        "session_id": session.id,
        "zoom_report": session.zoom_report,
        "zoom_report_saved_at": session.zoom_report_saved_at,
    }
