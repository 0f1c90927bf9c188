import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from CoursePortalAPI.change_feed import change_feed
from CoursePortalAPI.constants import SETTINGS_ROW_ID
from CoursePortalAPI.database import get_db
from CoursePortalAPI.errors import NotFoundError
from CoursePortalAPI.models import AppSettings, ClassSession, PenaltyType, RuleException, SubmissionItem, TaAllowlist
from CoursePortalAPI.procedures import check_ta_allowlist, get_my_ta_password, set_my_ta_password
from CoursePortalAPI.routes.auth import get_current_email, require_confirmation, require_ta
from CoursePortalAPI.routes.streams import change_stream
from CoursePortalAPI.schemas import (
    AppSettingsResponse,
    AppSettingsUpdate,
    IssueFormOptions,
    PenaltyTypeCreate,
    PenaltyTypeResponse,
    PenaltyTypeUpdate,
    RuleExceptionCreate,
    RuleExceptionResponse,
    SubmissionItemCreate,
    SubmissionItemResponse,
    SubmissionItemUpdate,
    TaAllowlistCreate,
    TaAllowlistResponse,
    TaAllowlistUpdate,
    TaPasswordResponse,
    TaPasswordUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_app_settings(db: Session) -> AppSettings:
    """
    Return the single settings row, creating it with defaults on first use.

    Args:
        db (Session): The database session.

    Returns:
        AppSettings: The portal settings.
    """
    settings = db.query(AppSettings).filter(AppSettings.id == SETTINGS_ROW_ID).first()
    if settings:
        return settings
    try:
        settings = AppSettings(id=SETTINGS_ROW_ID, roster_verification_enabled=True, tickets_enabled=True)
        db.add(settings)
        db.commit()
    except IntegrityError:
        # created by a concurrent request
        db.rollback()
        return db.query(AppSettings).filter(AppSettings.id == SETTINGS_ROW_ID).one()
    db.refresh(settings)
    return settings


def _settings_payload(settings: AppSettings) -> dict:
    return {
        "tickets_enabled": settings.tickets_enabled,
        "roster_verification_enabled": settings.roster_verification_enabled,
        "show_test_student_in_ta": settings.show_test_student_in_ta,
    }


def _apply_updates(db: Session, row, payload) -> None:
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)


@router.get("/settings", response_model=AppSettingsResponse)
def read_settings(db: Session = Depends(get_db)):
    return get_app_settings(db)


@router.patch("/settings", response_model=AppSettingsResponse)
def update_settings(payload: AppSettingsUpdate, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    """
    Switch ticket submission or roster verification on or off, and configure
    how the test student shows on TA views.

    Args:
        payload (AppSettingsUpdate): Fields to change.
        db (Session): The database session.
        ta_email (str): The signed-in TA.

    Returns:
        AppSettingsResponse: The updated settings.
    """
    settings = get_app_settings(db)
    old = _settings_payload(settings)
    _apply_updates(db, settings, payload)
    new = _settings_payload(settings)
    logger.info("%s updated app settings: %s", ta_email, new)
    change_feed.publish_nowait("app_settings", "UPDATE", new=new, old=old)
    return settings


@router.get("/settings/stream")
def settings_stream():
    """
    SSE endpoint for streaming settings updates.

    Returns:
        StreamingResponse: Server-Sent Events stream.
    """
    return change_stream("app_settings")


# TA allowlist
@router.get("/settings/ta-allowlist", response_model=List[TaAllowlistResponse])
def list_allowlist(
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    query = db.query(TaAllowlist)
    if not include_inactive:
        query = query.filter(TaAllowlist.active.is_(True))
    return query.order_by(TaAllowlist.email).all()


@router.get("/settings/ta-allowlist/check")
def check_allowlist(db: Session = Depends(get_db), email: str = Depends(get_current_email)):
    return {"email": email, "allowed": check_ta_allowlist(db, email)}


@router.post("/settings/ta-allowlist", response_model=TaAllowlistResponse, status_code=status.HTTP_201_CREATED)
def add_allowlist_entry(payload: TaAllowlistCreate, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    entry = TaAllowlist(email=payload.email, active=True, initial_password=payload.initial_password)
    try:
        db.add(entry)
        db.commit()
        db.refresh(entry)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"{payload.email} is already on the allowlist")
    logger.info("%s added %s to the TA allowlist", ta_email, entry.email)
    return entry


@router.patch("/settings/ta-allowlist/{entry_id}", response_model=TaAllowlistResponse)
def update_allowlist_entry(
    entry_id: int,
    payload: TaAllowlistUpdate,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    entry = db.query(TaAllowlist).filter(TaAllowlist.id == entry_id).first()
    if not entry:
        raise NotFoundError("Allowlist entry not found")
    _apply_updates(db, entry, payload)
    return entry


@router.delete("/settings/ta-allowlist/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_allowlist_entry(
    entry_id: int,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    entry = db.query(TaAllowlist).filter(TaAllowlist.id == entry_id).first()
    if not entry:
        raise NotFoundError("Allowlist entry not found")
    require_confirmation(confirm, f"Remove {entry.email} from the TA allowlist?")
    db.delete(entry)
    db.commit()
    return None


@router.get("/settings/ta-password", response_model=TaPasswordResponse)
def read_my_ta_password(db: Session = Depends(get_db), email: str = Depends(get_current_email)):
    return {"password": get_my_ta_password(db, email)}


@router.put("/settings/ta-password", status_code=status.HTTP_204_NO_CONTENT)
def update_my_ta_password(payload: TaPasswordUpdate, db: Session = Depends(get_db), email: str = Depends(get_current_email)):
    """
    Change the signed-in TA's password.

    Raises:
        ProcedureError: Password shorter than six characters, or the caller is not an allowlisted TA (400).
    """
    set_my_ta_password(db, email, payload.new_password)
    return None


# Submissions list
@router.get("/settings/submissions", response_model=List[SubmissionItemResponse])
def list_submissions(
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    query = db.query(SubmissionItem)
    if not include_inactive:
        query = query.filter(SubmissionItem.active.is_(True))
    return query.order_by(SubmissionItem.sort_order.asc().nulls_last(), SubmissionItem.id).all()


@router.post("/settings/submissions", response_model=SubmissionItemResponse, status_code=status.HTTP_201_CREATED)
def create_submission(payload: SubmissionItemCreate, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    item = SubmissionItem(**payload.model_dump())
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@router.patch("/settings/submissions/{item_id}", response_model=SubmissionItemResponse)
def update_submission(
    item_id: int,
    payload: SubmissionItemUpdate,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    item = db.query(SubmissionItem).filter(SubmissionItem.id == item_id).first()
    if not item:
        raise NotFoundError("Submission not found")
    _apply_updates(db, item, payload)
    return item


@router.delete("/settings/submissions/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_submission(
    item_id: int,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    item = db.query(SubmissionItem).filter(SubmissionItem.id == item_id).first()
    if not item:
        raise NotFoundError("Submission not found")
    require_confirmation(confirm, f"Delete the submission '{item.label}'?")
    db.delete(item)
    db.commit()
    return None


# Penalty types
@router.get("/settings/penalty-types", response_model=List[PenaltyTypeResponse])
def list_penalty_types(
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    query = db.query(PenaltyType)
    if not include_inactive:
        query = query.filter(PenaltyType.active.is_(True))
    return query.order_by(PenaltyType.label).all()


@router.post("/settings/penalty-types", response_model=PenaltyTypeResponse, status_code=status.HTTP_201_CREATED)
def create_penalty_type(payload: PenaltyTypeCreate, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    penalty_type = PenaltyType(**payload.model_dump())
    db.add(penalty_type)
    db.commit()
    db.refresh(penalty_type)
    return penalty_type


@router.patch("/settings/penalty-types/{penalty_type_id}", response_model=PenaltyTypeResponse)
def update_penalty_type(
    penalty_type_id: int,
    payload: PenaltyTypeUpdate,
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    penalty_type = db.query(PenaltyType).filter(PenaltyType.id == penalty_type_id).first()
    if not penalty_type:
        raise NotFoundError("Penalty type not found")
    _apply_updates(db, penalty_type, payload)
    return penalty_type


@router.delete("/settings/penalty-types/{penalty_type_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_penalty_type(
    penalty_type_id: int,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    penalty_type = db.query(PenaltyType).filter(PenaltyType.id == penalty_type_id).first()
    if not penalty_type:
        raise NotFoundError("Penalty type not found")
    require_confirmation(confirm, f"Delete the penalty type '{penalty_type.label}'?")
    db.delete(penalty_type)
    db.commit()
    return None


@router.get("/issue-form-options", response_model=IssueFormOptions)
def get_issue_form_options(db: Session = Depends(get_db), email: str = Depends(get_current_email)):
    """
    Choices for the student issue form.

    Returns:
        IssueFormOptions: Active submissions by sort order, active penalty
        types and all sessions, newest first.
    """
    submissions = (
        db.query(SubmissionItem)
        .filter(SubmissionItem.active.is_(True))
        .order_by(SubmissionItem.sort_order.asc().nulls_last(), SubmissionItem.id)
        .all()
    )
    penalty_types = db.query(PenaltyType).filter(PenaltyType.active.is_(True)).order_by(PenaltyType.label).all()
    sessions = db.query(ClassSession).order_by(ClassSession.session_number.desc()).all()
    return {"submissions": submissions, "penalty_types": penalty_types, "sessions": sessions}


# Rule exceptions
@router.get("/rule-exceptions", response_model=List[RuleExceptionResponse])
def list_rule_exceptions(db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    return db.query(RuleException).order_by(RuleException.created_at.desc(), RuleException.id.desc()).all()


@router.post("/rule-exceptions", response_model=RuleExceptionResponse, status_code=status.HTTP_201_CREATED)
def create_rule_exception(payload: RuleExceptionCreate, db: Session = Depends(get_db), ta_email: str = Depends(require_ta)):
    exception = RuleException(**payload.model_dump(), active=True)
    db.add(exception)
    db.commit()
    db.refresh(exception)
    return exception


@router.delete("/rule-exceptions/{exception_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule_exception(
    exception_id: int,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    ta_email: str = Depends(require_ta),
):
    exception = db.query(RuleException).filter(RuleException.id == exception_id).first()
    if not exception:
        raise NotFoundError("Rule exception not found")
    require_confirmation(confirm, "Delete this rule exception?")
    db.delete(exception)
    db.commit()
    return None
