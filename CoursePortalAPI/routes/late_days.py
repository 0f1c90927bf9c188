import logging
from collections import defaultdict
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from CoursePortalAPI.database import get_db
from CoursePortalAPI.errors import NotFoundError, ValidationError
from CoursePortalAPI.late_days import LateDaysView, as_utc, compute_balance
from CoursePortalAPI.models import LateDayAdjustment, LateDayAssignment, LateDayClaim, RosterStudent
from CoursePortalAPI.procedures import claim_late_days, load_student_late_days, ta_add_late_day
from CoursePortalAPI.routes.auth import StudentIdentity, require_confirmation, require_student, require_ta
from CoursePortalAPI.schemas import (
    LateDayAdjustmentCreate,
    LateDayAdjustmentResult,
    LateDayAssignmentCreate,
    LateDayAssignmentResponse,
    LateDayAssignmentUpdate,
    LateDayClaimRequest,
    LateDayClaimResult,
    LateDaysOverviewResponse,
    StudentLateDaysResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

ARCHIVE_CONFIRMATION = "Archive this assignment? It will be hidden from students but claim history is preserved."
DELETE_CLAIM_CONFIRMATION = "Delete this claim row? This will return those late days to the student balance."


def _student_view(view: LateDaysView, erp: str) -> Dict[str, Any]:
    assignments_by_id = {a.id: a for a in view.assignments}
    return {
        "erp": erp,
        "balance": view.balance,
        "assignments": [
            {
                "assignment": assignments_by_id[item.assignment_id],
                "state": item.state,
                "can_claim": item.can_claim,
                "effective_due_at": item.effective_due_at,
                "claimed_days": item.claimed_days,
                "claim_count": item.claim_count,
                "latest_claim_at": item.latest_claim_at,
            }
            for item in view.availability()
        ],
        "claims": view.claims,
        "adjustments": view.adjustments,
    }


@router.get("/late-days/me", response_model=StudentLateDaysResponse)
def get_my_late_days(db: Session = Depends(get_db), student: StudentIdentity = Depends(require_student)):
    """
    Late-day balance, assignment availability and history of the signed-in student.

    Args:
        db (Session): The database session.
        student (StudentIdentity): The signed-in student.

    Returns:
        StudentLateDaysResponse: Balance, per-assignment availability, claims and adjustments.
    """
    view = LateDaysView(*load_student_late_days(db, student.erp))
    return _student_view(view, student.erp)


@router.post("/late-days/claims", response_model=LateDayClaimResult)
def submit_late_day_claim(
    payload: LateDayClaimRequest,
    db: Session = Depends(get_db),
    student: StudentIdentity = Depends(require_student),
):
    """
    Spend late days on an assignment.

    The request is checked against the student's current view first; the
    claim procedure then re-validates under a row lock and records the claim.

    Args:
        payload (LateDayClaimRequest): Assignment and number of days.
        db (Session): The database session.
        student (StudentIdentity): The signed-in student.

    Returns:
        LateDayClaimResult: The created claim and the new balance.

    Raises:
        ClaimValidationError: The claim fails the local checks (400).
        ProcedureError: The claim procedure rejected the claim (400).
    """
    view = LateDaysView(*load_student_late_days(db, student.erp))
    result = view.submit_claim(
        payload.assignment_id,
        payload.days,
        procedure=lambda assignment_id, days: claim_late_days(db, student.email, student.erp, assignment_id, days),
        refetch=lambda: load_student_late_days(db, student.erp),
    )
    return result


# TA administration
@router.get("/ta/late-days", response_model=LateDaysOverviewResponse)
def get_late_days_overview(db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    """
    Everything the TA late-day screen shows, with a balance per roster student.

    Returns:
        LateDaysOverviewResponse: Assignments (active first, then by due date),
        claims and adjustments (newest first) and per-student balances.
    """
    assignments = (
        db.query(LateDayAssignment)
        .order_by(LateDayAssignment.active.desc(), LateDayAssignment.due_at.asc().nulls_last(), LateDayAssignment.id)
        .all()
    )
    claims = db.query(LateDayClaim).order_by(LateDayClaim.claimed_at.desc(), LateDayClaim.id.desc()).all()
    adjustments = (
        db.query(LateDayAdjustment).order_by(LateDayAdjustment.created_at.desc(), LateDayAdjustment.id.desc()).all()
    )
    roster = db.query(RosterStudent).order_by(RosterStudent.class_no, RosterStudent.student_name).all()

    claims_by_erp = defaultdict(list)
    for claim in claims:
        claims_by_erp[claim.student_erp].append(claim)
    adjustments_by_erp = defaultdict(list)
    for adjustment in adjustments:
        adjustments_by_erp[adjustment.student_erp].append(adjustment)

    students = []
    for student in roster:
        balance = compute_balance(claims_by_erp[student.erp], adjustments_by_erp[student.erp])
        students.append(
            {
                "erp": student.erp,
                "student_name": student.student_name,
                "class_no": student.class_no,
                "used_days": balance.used_days,
                "granted_days": balance.granted_days,
                "total_allowance": balance.total_allowance,
                "remaining": balance.remaining,
            }
        )

    return {"assignments": assignments, "claims": claims, "adjustments": adjustments, "students": students}


@router.post("/ta/late-days/assignments", response_model=LateDayAssignmentResponse, status_code=status.HTTP_201_CREATED)
def create_assignment(payload: LateDayAssignmentCreate, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    assignment = LateDayAssignment(title=payload.title, due_at=as_utc(payload.due_at), active=True)
    try:
        db.add(assignment)
        db.commit()
        db.refresh(assignment)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Failed to create assignment: {e}")
    logger.info("%s created late-day assignment %s", ta_email, assignment.id)
    return assignment


@router.put("/ta/late-days/assignments/{assignment_id}", response_model=LateDayAssignmentResponse)
def update_assignment(
    assignment_id: int,
    payload: LateDayAssignmentUpdate,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """
    Rename an assignment or move its deadline.

    Existing claims keep their recorded before/after deadlines.
    """
    assignment = db.query(LateDayAssignment).filter(LateDayAssignment.id == assignment_id).first()
    if not assignment:
        raise NotFoundError("Assignment not found")
    assignment.title = payload.title
    assignment.due_at = as_utc(payload.due_at)
    try:
        db.commit()
        db.refresh(assignment)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Failed to update assignment: {e}")
    return assignment


@router.post("/ta/late-days/assignments/{assignment_id}/archive", response_model=LateDayAssignmentResponse)
def archive_assignment(
    assignment_id: int,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """
    Hide an assignment from students. Claims are kept.

    Raises:
        ConfirmationRequired: `confirm` was not set (409).
        ValidationError: The assignment is already archived (400).
    """
    assignment = db.query(LateDayAssignment).filter(LateDayAssignment.id == assignment_id).first()
    if not assignment:
        raise NotFoundError("Assignment not found")
    if not assignment.active:
        raise ValidationError("This assignment is already archived.", code="assignment_already_archived")
    require_confirmation(confirm, ARCHIVE_CONFIRMATION)

    assignment.active = False
    db.commit()
    db.refresh(assignment)
    logger.info("%s archived late-day assignment %s", ta_email, assignment.id)
    return assignment


@router.delete("/ta/late-days/claims/{claim_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_claim(
    claim_id: int,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """Delete one claim row, which returns its days to the student's balance."""
    claim = db.query(LateDayClaim).filter(LateDayClaim.id == claim_id).first()
    if not claim:
        raise NotFoundError("Claim not found")
    require_confirmation(confirm, DELETE_CLAIM_CONFIRMATION)

    student_erp = claim.student_erp
    db.delete(claim)
    db.commit()
    logger.info("%s deleted late-day claim %s of %s", ta_email, claim_id, student_erp)
    return None


@router.post("/ta/late-days/adjustments", response_model=LateDayAdjustmentResult, status_code=status.HTTP_201_CREATED)
def grant_adjustment(payload: LateDayAdjustmentCreate, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    """
    Grant bonus late days to a roster student.

    Raises:
        ProcedureError: Days is not a positive whole number or the ERP is not on the roster (400).
    """
    return ta_add_late_day(db, ta_email, payload.student_erp, payload.days, payload.reason)
