import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from CoursePortalAPI.change_feed import change_feed
from CoursePortalAPI.database import get_db
from CoursePortalAPI.errors import NotFoundError, ValidationError
from CoursePortalAPI.models import Attendance, RosterStudent
from CoursePortalAPI.procedures import check_roster
from CoursePortalAPI.roster import normalize_name, parse_roster_text
from CoursePortalAPI.routes.auth import get_current_email, require_confirmation, require_ta
from CoursePortalAPI.schemas import (
    RosterCheckResponse,
    RosterListResponse,
    RosterReplace,
    RosterReplaceResponse,
    RosterStudentCreate,
    RosterStudentResponse,
    RosterStudentUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DELETE_STUDENT_CONFIRMATION = "Are you sure you want to delete this student?"
REPLACE_ROSTER_CONFIRMATION = (
    "Replace the entire roster? Every current student and their attendance rows will be removed first."
)


def _student_payload(student: RosterStudent) -> dict:
    return {"id": student.id, "class_no": student.class_no, "student_name": student.student_name, "erp": student.erp}


@router.get("/roster", response_model=RosterListResponse)
def list_roster(
    search: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """
    List roster students ordered by class number and name.

    Args:
        search (str, optional): Case-insensitive match on name or ERP.
        limit (int, optional): Maximum rows to return; `count` is always the full total.
        db (Session): The database session.
        ta_email (str): The signed-in TA.

    Returns:
        RosterListResponse: Total count and the students.
    """
    query = db.query(RosterStudent)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(RosterStudent.student_name.ilike(pattern), RosterStudent.erp.ilike(pattern)))
    count = query.count()
    query = query.order_by(RosterStudent.class_no, RosterStudent.student_name)
    if limit:
        query = query.limit(limit)
    return {"count": count, "students": query.all()}


@router.get("/roster/check/{erp}", response_model=RosterCheckResponse)
def check_roster_erp(erp: str, db: Session = Depends(get_db), email: str = Depends(get_current_email)):
    return check_roster(db, erp)


@router.post("/roster", response_model=RosterStudentResponse, status_code=status.HTTP_201_CREATED)
def add_student(payload: RosterStudentCreate, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    student = RosterStudent(
        class_no=payload.class_no,
        student_name=normalize_name(payload.student_name),
        erp=payload.erp,
    )
    try:
        db.add(student)
        db.commit()
        db.refresh(student)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"ERP {payload.erp} is already on the roster")
    change_feed.publish_nowait("students_roster", "INSERT", new=_student_payload(student))
    return student


@router.put("/roster/{student_id}", response_model=RosterStudentResponse)
def update_student(
    student_id: int,
    payload: RosterStudentUpdate,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """
    Edit a roster student. Changing the ERP carries their attendance rows along.
    """
    student = db.query(RosterStudent).filter(RosterStudent.id == student_id).first()
    if not student:
        raise NotFoundError("Student not found")
    old = _student_payload(student)

    update_data = payload.model_dump(exclude_unset=True)
    for field in ("class_no", "student_name", "erp"):
        if field in update_data:
            value = (update_data[field] or "").strip()
            if not value:
                raise ValidationError(f"{field} cannot be blank")
            update_data[field] = value
    if "student_name" in update_data:
        update_data["student_name"] = normalize_name(update_data["student_name"])

    old_erp = student.erp
    new_erp = update_data.get("erp")
    try:
        for key, value in update_data.items():
            setattr(student, key, value)
        db.flush()
        if new_erp and new_erp != old_erp:
            # no-op where the foreign key cascades the ERP change itself
            db.query(Attendance).filter(Attendance.erp == old_erp).update(
                {Attendance.erp: new_erp}, synchronize_session=False
            )
        db.commit()
        db.refresh(student)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"ERP {new_erp} is already on the roster")
    change_feed.publish_nowait("students_roster", "UPDATE", new=_student_payload(student), old=old)
    return student


@router.delete("/roster/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_student(
    student_id: int,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    student = db.query(RosterStudent).filter(RosterStudent.id == student_id).first()
    if not student:
        raise NotFoundError("Student not found")
    require_confirmation(confirm, DELETE_STUDENT_CONFIRMATION)

    old = _student_payload(student)
    db.query(Attendance).filter(Attendance.erp == student.erp).delete(synchronize_session=False)
    db.delete(student)
    db.commit()
    change_feed.publish_nowait("students_roster", "DELETE", old=old)
    return None


@router.put("/roster", response_model=RosterReplaceResponse)
def replace_roster(
    payload: RosterReplace,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """
    Replace the whole roster with the given students or pasted roster text.

    Existing attendance and roster rows are deleted and committed before the
    new rows are inserted; a failed insert leaves the roster empty.

    Raises:
        ConfirmationRequired: `confirm` was not set (409).
        ValidationError: Nothing valid to import (400).
    """
    students = [dict(s.model_dump(), student_name=normalize_name(s.student_name)) for s in payload.students]
    skipped = []
    if payload.text:
        parsed, skipped = parse_roster_text(payload.text)
        students.extend(parsed)
    if not students:
        raise ValidationError("No valid students found to upload.", code="roster_empty")
    require_confirmation(confirm, REPLACE_ROSTER_CONFIRMATION)

    db.query(Attendance).delete(synchronize_session=False)
    db.query(RosterStudent).delete(synchronize_session=False)
    db.commit()

    try:
        db.add_all([RosterStudent(**student) for student in students])
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.error("Roster insert failed after delete: %s", e)
        raise HTTPException(status_code=400, detail="Failed to insert the new roster: duplicate ERP")

    logger.info("%s replaced the roster with %s students (%s lines skipped)", ta_email, len(students), len(skipped))
    change_feed.publish_nowait("students_roster", "INSERT", new={"count": len(students)})
    return {"count": len(students), "skipped": skipped}
