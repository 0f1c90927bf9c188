from pydantic import BaseModel, validator, Field
from typing import Any, Dict, List, Optional, Union
from datetime import datetime, date

from CoursePortalAPI.attendance import normalize_test_student_overrides
from CoursePortalAPI.constants import ATTENDANCE_STATUS_CYCLE, TICKET_PENDING, TICKET_RESOLVED


def _strip_required(value: str, label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(f"{label} is required")
    return value


# App settings
class AppSettingsResponse(BaseModel):
    id: int
    roster_verification_enabled: bool
    tickets_enabled: bool
    show_test_student_in_ta: bool = False
    test_student_overrides: Dict[str, Any] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None

    @validator("test_student_overrides", pre=True)
    def overrides_default(cls, value):
        return value if isinstance(value, dict) else {}

    class Config:
        from_attributes = True


class AppSettingsUpdate(BaseModel):
    roster_verification_enabled: Optional[bool] = None
    tickets_enabled: Optional[bool] = None
    show_test_student_in_ta: Optional[bool] = None
    test_student_overrides: Optional[Dict[str, Any]] = None

    @validator("test_student_overrides")
    def clean_overrides(cls, value):
        if value is None:
            return value
        return normalize_test_student_overrides(value)


# TA allowlist
class TaAllowlistCreate(BaseModel):
    email: str
    initial_password: Optional[str] = None

    @validator("email")
    def normalize_email(cls, value):
        value = _strip_required(value, "Email").lower()
        if "@" not in value:
            raise ValueError("Enter a valid email address")
        return value


class TaAllowlistUpdate(BaseModel):
    active: Optional[bool] = None
    initial_password: Optional[str] = None


class TaAllowlistResponse(BaseModel):
    id: int
    email: str
    active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TaPasswordResponse(BaseModel):
    password: Optional[str] = None


class TaPasswordUpdate(BaseModel):
    new_password: str


# Roster
class RosterStudentCreate(BaseModel):
    class_no: str
    student_name: str
    erp: str

    @validator("class_no", "student_name", "erp")
    def not_blank(cls, value):
        return _strip_required(value, "This field")


class RosterStudentUpdate(BaseModel):
    class_no: Optional[str] = None
    student_name: Optional[str] = None
    erp: Optional[str] = None


class RosterStudentResponse(BaseModel):
    id: int
    class_no: str
    student_name: str
    erp: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RosterListResponse(BaseModel):
    count: int
    students: List[RosterStudentResponse] = Field(default_factory=list)


class RosterReplace(BaseModel):
    students: List[RosterStudentCreate] = Field(default_factory=list)
    text: Optional[str] = None


class RosterReplaceResponse(BaseModel):
    count: int
    skipped: List[str] = Field(default_factory=list)


class RosterCheckResponse(BaseModel):
    found: bool
    student_name: Optional[str] = None
    class_no: Optional[str] = None


# Sessions
class SessionCreate(BaseModel):
    session_number: int
    session_date: date
    day_of_week: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    @validator("session_number")
    def positive_number(cls, value):
        if value < 1:
            raise ValueError("Session number must be at least 1")
        return value


class SessionUpdate(BaseModel):
    session_number: Optional[int] = None
    session_date: Optional[date] = None
    day_of_week: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class SessionResponse(BaseModel):
    id: int
    session_number: int
    session_date: date
    day_of_week: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    zoom_report_saved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ZoomReportSave(BaseModel):
    report: Dict[str, Any]


class ZoomReportResponse(BaseModel):
    session_id: int
    zoom_report: Optional[Dict[str, Any]] = None
    zoom_report_saved_at: Optional[datetime] = None


# Attendance
class AttendanceResponse(BaseModel):
    id: int
    session_id: int
    erp: str
    status: str
    naming_penalty: bool
    student_name: Optional[str] = None
    class_no: Optional[str] = None

    class Config:
        from_attributes = True


class BulkMarkRequest(BaseModel):
    absent_text: str = ""
    overwrite: bool = False
    zoom_report: Optional[Dict[str, Any]] = None


class BulkMarkResponse(BaseModel):
    session_id: int
    marked: int
    present: int
    absent: int
    overwritten: bool
    zoom_report_saved: bool = False
    unmatched: List[str] = Field(default_factory=list)


class AttendanceStatusUpdate(BaseModel):
    status: str

    @validator("status")
    def known_status(cls, value):
        if value not in ATTENDANCE_STATUS_CYCLE:
            raise ValueError(f"Status must be one of {', '.join(ATTENDANCE_STATUS_CYCLE)}")
        return value


class PenaltyUpdate(BaseModel):
    naming_penalty: bool


class StudentAttendanceRecord(BaseModel):
    session_id: int
    session_number: int
    session_date: str
    day_of_week: str
    status: str
    naming_penalty: bool


class StudentAttendanceResponse(BaseModel):
    records: List[StudentAttendanceRecord] = Field(default_factory=list)
    total_absences: int = 0
    total_naming_penalties: int = 0


# Public board
class PublicBoardSession(BaseModel):
    id: str
    session_number: Union[int, float]
    session_date: str
    day_of_week: str


class PublicPenaltyEntry(BaseModel):
    session_id: str
    session_number: Union[int, float]
    session_date: str
    day_of_week: str
    details: Optional[Dict[str, Any]] = None


class PublicBoardStudent(BaseModel):
    class_no: str
    student_name: str
    erp: str
    total_penalties: Union[int, float]
    total_absences: Union[int, float]
    session_status: Dict[str, str] = Field(default_factory=dict)
    penalty_entries: List[PublicPenaltyEntry] = Field(default_factory=list)


class PublicBoardResponse(BaseModel):
    sessions: List[PublicBoardSession] = Field(default_factory=list)
    students: List[PublicBoardStudent] = Field(default_factory=list)


class SheetSyncResponse(BaseModel):
    success: bool
    students: int
    sessions: int


# Tickets
class TicketCreate(BaseModel):
    entered_erp: str
    group_type: str
    category: str
    subcategory: Optional[str] = None
    details_text: Optional[str] = None
    details_json: Optional[Dict[str, Any]] = None

    @validator("entered_erp", "group_type", "category")
    def not_blank(cls, value):
        return _strip_required(value, "This field")


class TicketResponse(BaseModel):
    id: int
    entered_erp: str
    roster_name: Optional[str] = None
    roster_class_no: Optional[str] = None
    created_by_email: str
    status: str
    group_type: str
    category: str
    subcategory: Optional[str] = None
    details_text: Optional[str] = None
    details_json: Optional[Dict[str, Any]] = None
    ta_response: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TicketTAResponse(TicketResponse):
    real_name: str = "Unknown"


class TicketStatusUpdate(BaseModel):
    status: str

    @validator("status")
    def known_status(cls, value):
        if value not in (TICKET_PENDING, TICKET_RESOLVED):
            raise ValueError("Status must be pending or resolved")
        return value


class TicketReply(BaseModel):
    ta_response: Optional[str] = None


# Rule exceptions
class RuleExceptionCreate(BaseModel):
    erp: str
    student_name: Optional[str] = None
    class_no: Optional[str] = None
    issue_type: Optional[str] = None
    assigned_day: Optional[str] = None
    notes: Optional[str] = None

    @validator("erp")
    def erp_required(cls, value):
        return _strip_required(value, "ERP")


class RuleExceptionFromTicket(BaseModel):
    issue_type: Optional[str] = None
    assigned_day: Optional[str] = None
    notes: Optional[str] = None


class RuleExceptionResponse(BaseModel):
    id: int
    erp: str
    student_name: Optional[str] = None
    class_no: Optional[str] = None
    issue_type: Optional[str] = None
    assigned_day: Optional[str] = None
    notes: Optional[str] = None
    active: Optional[bool] = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Issue form lists
class SubmissionItemCreate(BaseModel):
    label: str
    active: bool = True
    sort_order: Optional[int] = None

    @validator("label")
    def label_required(cls, value):
        return _strip_required(value, "Label")


class SubmissionItemUpdate(BaseModel):
    label: Optional[str] = None
    active: Optional[bool] = None
    sort_order: Optional[int] = None


class SubmissionItemResponse(BaseModel):
    id: int
    label: str
    active: bool
    sort_order: Optional[int] = None

    class Config:
        from_attributes = True


class PenaltyTypeCreate(BaseModel):
    label: str
    active: bool = True
    time_window_hours: int = 24

    @validator("label")
    def label_required(cls, value):
        return _strip_required(value, "Label")


class PenaltyTypeUpdate(BaseModel):
    label: Optional[str] = None
    active: Optional[bool] = None
    time_window_hours: Optional[int] = None


class PenaltyTypeResponse(BaseModel):
    id: int
    label: str
    active: bool
    time_window_hours: int

    class Config:
        from_attributes = True


class IssueFormOptions(BaseModel):
    submissions: List[SubmissionItemResponse] = Field(default_factory=list)
    penalty_types: List[PenaltyTypeResponse] = Field(default_factory=list)
    sessions: List[SessionResponse] = Field(default_factory=list)


# Late days
class LateDayAssignmentCreate(BaseModel):
    title: str
    due_at: datetime

    @validator("title")
    def title_required(cls, value):
        return _strip_required(value, "Title")


class LateDayAssignmentUpdate(LateDayAssignmentCreate):
    pass


class LateDayAssignmentResponse(BaseModel):
    id: int
    title: str
    due_at: Optional[datetime] = None
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LateDayClaimResponse(BaseModel):
    id: int
    assignment_id: int
    student_email: str
    student_erp: str
    days_used: int
    claimed_at: datetime
    due_at_before_claim: datetime
    due_at_after_claim: datetime

    class Config:
        from_attributes = True


class LateDayAdjustmentResponse(BaseModel):
    id: int
    student_erp: str
    days_delta: int
    reason: Optional[str] = None
    created_by_email: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LateDayBalanceResponse(BaseModel):
    used_days: int
    granted_days: int
    total_allowance: int
    remaining: int

    class Config:
        from_attributes = True


class AssignmentAvailabilityResponse(BaseModel):
    assignment: LateDayAssignmentResponse
    state: str
    can_claim: bool
    effective_due_at: Optional[datetime] = None
    claimed_days: int = 0
    claim_count: int = 0
    latest_claim_at: Optional[datetime] = None


class StudentLateDaysResponse(BaseModel):
    erp: str
    balance: LateDayBalanceResponse
    assignments: List[AssignmentAvailabilityResponse] = Field(default_factory=list)
    claims: List[LateDayClaimResponse] = Field(default_factory=list)
    adjustments: List[LateDayAdjustmentResponse] = Field(default_factory=list)


class LateDayClaimRequest(BaseModel):
    assignment_id: int
    days: int


class LateDayClaimResult(BaseModel):
    success: bool
    claim: Optional[LateDayClaimResponse] = None
    remaining_late_days: int
    total_allowance: int


class LateDayAdjustmentCreate(BaseModel):
    student_erp: str
    days: int
    reason: Optional[str] = None


class LateDayAdjustmentResult(BaseModel):
    success: bool
    adjustment: LateDayAdjustmentResponse
    remaining_late_days: int
    total_allowance: int


class StudentBalanceRow(BaseModel):
    erp: str
    student_name: str
    class_no: str
    used_days: int
    granted_days: int
    total_allowance: int
    remaining: int


class LateDaysOverviewResponse(BaseModel):
    assignments: List[LateDayAssignmentResponse] = Field(default_factory=list)
    claims: List[LateDayClaimResponse] = Field(default_factory=list)
    adjustments: List[LateDayAdjustmentResponse] = Field(default_factory=list)
    students: List[StudentBalanceRow] = Field(default_factory=list)
