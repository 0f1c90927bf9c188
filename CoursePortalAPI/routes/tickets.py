import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from CoursePortalAPI.change_feed import change_feed
from CoursePortalAPI.constants import TICKET_PENDING, TICKET_RESOLVED
from CoursePortalAPI.database import get_db
from CoursePortalAPI.errors import NotFoundError, ValidationError
from CoursePortalAPI.models import RosterStudent, RuleException, Ticket
from CoursePortalAPI.routes.auth import StudentIdentity, require_confirmation, require_student, require_ta
from CoursePortalAPI.routes.settings import get_app_settings
from CoursePortalAPI.routes.streams import change_stream
from CoursePortalAPI.schemas import (
    RuleExceptionFromTicket,
    RuleExceptionResponse,
    TicketCreate,
    TicketReply,
    TicketResponse,
    TicketStatusUpdate,
    TicketTAResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DELETE_TICKET_CONFIRMATION = "Are you sure you want to delete this ticket?"


def _ticket_payload(ticket: Ticket) -> dict:
    return jsonable_encoder(TicketResponse.model_validate(ticket))


def _get_ticket_or_404(db: Session, ticket_id: int) -> Ticket:
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
    if not ticket:
        raise NotFoundError("Ticket not found")
    return ticket


def _with_real_name(ticket: Ticket, names: dict) -> dict:
    data = TicketResponse.model_validate(ticket).model_dump()
    data["real_name"] = names.get(ticket.entered_erp) or ticket.roster_name or "Unknown"
    return data


# Student endpoints
@router.post("/tickets", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
def create_ticket(payload: TicketCreate, db: Session = Depends(get_db), student: StudentIdentity = Depends(require_student)):
    """
    Submit a ticket.

    The roster name and class at submission time are stored with the ticket.

    Raises:
        ValidationError: Tickets are switched off, or roster verification is on
            and the ERP is not on the roster (400).
    """
    settings = get_app_settings(db)
    if not settings.tickets_enabled:
        raise ValidationError("Ticket submission is currently disabled.", code="tickets_disabled")

    roster_entry = db.query(RosterStudent).filter(RosterStudent.erp == payload.entered_erp).first()
    if settings.roster_verification_enabled and not roster_entry:
        raise ValidationError("ERP not found on the roster.", code="erp_not_on_roster")

    ticket = Ticket(
        **payload.model_dump(),
        roster_name=roster_entry.student_name if roster_entry else None,
        roster_class_no=roster_entry.class_no if roster_entry else None,
        created_by_email=student.email,
        status=TICKET_PENDING,
    )
    db.add(ticket)
    db.commit()
    db.refresh(ticket)
    change_feed.publish_nowait("tickets", "INSERT", new=_ticket_payload(ticket))
    return ticket


@router.get("/tickets/mine", response_model=List[TicketResponse])
def list_my_tickets(db: Session = Depends(get_db), student: StudentIdentity = Depends(require_student)):
    return (
        db.query(Ticket)
        .filter(Ticket.created_by_email == student.email)
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        .all()
    )


@router.get("/tickets/mine/stream")
def my_tickets_stream(student: StudentIdentity = Depends(require_student)):
    return change_stream("tickets", "UPDATE", f"entered_erp=eq.{student.erp}")


# TA endpoints
@router.get("/tickets", response_model=List[TicketTAResponse])
def list_tickets(
    ticket_status: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """
    List all tickets newest first, each with the student's roster name.

    `real_name` falls back to the name stored at submission, then "Unknown".
    """
    query = db.query(Ticket)
    if ticket_status:
        query = query.filter(Ticket.status == ticket_status)
    tickets = query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()
    names = dict(db.query(RosterStudent.erp, RosterStudent.student_name).all())
    return [_with_real_name(ticket, names) for ticket in tickets]


@router.get("/tickets/stream")
def tickets_stream(ta_email: str = Depends(require_ta)):
    return change_stream("tickets")


def _update_ticket(db: Session, ticket: Ticket, **changes) -> Ticket:
    old = _ticket_payload(ticket)
    for key, value in changes.items():
        setattr(ticket, key, value)
    db.commit()
    db.refresh(ticket)
    change_feed.publish_nowait("tickets", "UPDATE", new=_ticket_payload(ticket), old=old)
    return ticket


@router.post("/tickets/{ticket_id}/toggle", response_model=TicketResponse)
def toggle_ticket_status(ticket_id: int, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    ticket = _get_ticket_or_404(db, ticket_id)
    new_status = TICKET_RESOLVED if ticket.status == TICKET_PENDING else TICKET_PENDING
    return _update_ticket(db, ticket, status=new_status)


@router.put("/tickets/{ticket_id}/status", response_model=TicketResponse)
def set_ticket_status(
    ticket_id: int,
    payload: TicketStatusUpdate,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    ticket = _get_ticket_or_404(db, ticket_id)
    return _update_ticket(db, ticket, status=payload.status)


@router.put("/tickets/{ticket_id}/response", response_model=TicketResponse)
def set_ticket_response(
    ticket_id: int,
    payload: TicketReply,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    ticket = _get_ticket_or_404(db, ticket_id)
    return _update_ticket(db, ticket, ta_response=(payload.ta_response or "").strip() or None)


@router.delete("/tickets/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_ticket(
    ticket_id: int,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    ticket = _get_ticket_or_404(db, ticket_id)
    require_confirmation(confirm, DELETE_TICKET_CONFIRMATION)
    old = _ticket_payload(ticket)
    db.delete(ticket)
    db.commit()
    change_feed.publish_nowait("tickets", "DELETE", old=old)
    return None


@router.post("/tickets/{ticket_id}/rule-exception", response_model=RuleExceptionResponse, status_code=status.HTTP_201_CREATED)
def create_rule_exception_from_ticket(
    ticket_id: int,
    payload: RuleExceptionFromTicket,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    """
    Turn a ticket into a standing rule exception for its student.

    Name and class come from the roster when the ERP is on it, otherwise from
    the ticket's submission snapshot.
    """
    ticket = _get_ticket_or_404(db, ticket_id)
    roster_entry = db.query(RosterStudent).filter(RosterStudent.erp == ticket.entered_erp).first()
    exception = RuleException(
        erp=ticket.entered_erp,
        student_name=roster_entry.student_name if roster_entry else (ticket.roster_name or "Unknown"),
        class_no=roster_entry.class_no if roster_entry else ticket.roster_class_no,
        issue_type=payload.issue_type or ticket.category,
        assigned_day=payload.assigned_day,
        notes=payload.notes or ticket.details_text,
        active=True,
    )
    db.add(exception)
    db.commit()
    db.refresh(exception)
    logger.info("%s created rule exception %s from ticket %s", ta_email, exception.id, ticket.id)
    return exception
