from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, ForeignKey, Text, JSON, UniqueConstraint, CheckConstraint, func
from sqlalchemy.orm import relationship, declarative_base


Base = declarative_base()


# Single-row table for portal-wide feature switches
class AppSettings(Base):
    """
    Portal-wide settings.

    The table holds a single row, pinned to id 1, toggled by TAs from the
    settings screen.

    Attributes:
        id (int): The primary key.
        roster_verification_enabled (bool): Require a roster match before a ticket is accepted.
        tickets_enabled (bool): Whether students may submit new tickets.
        show_test_student_in_ta (bool): Show the test student on TA attendance views.
        test_student_overrides (dict): Values the test student shows with on TA views.
        created_at (datetime): The timestamp when the row was created.
        updated_at (datetime): The timestamp when the row was last updated.
    """
    __tablename__ = "app_settings"
    __table_args__ = (CheckConstraint("id = 1", name="ck_app_settings_single_row"),)

    id = Column(Integer, primary_key=True, index=True, default=1)
    roster_verification_enabled = Column(Boolean, nullable=False, default=True)
    tickets_enabled = Column(Boolean, nullable=False, default=True)
    show_test_student_in_ta = Column(Boolean, nullable=False, default=False)
    test_student_overrides = Column(JSON, nullable=True, default=dict)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)


class TaAllowlist(Base):
    """
    Email allowlist granting TA access.

    Attributes:
        id (int): The primary key.
        email (str): TA email address (unique, lower-cased).
        active (bool): Inactive entries no longer grant access.
        initial_password (str): Password handed to the TA, readable by that TA only.
        created_at (datetime): The timestamp when the entry was added.
    """
    __tablename__ = "ta_allowlist"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    active = Column(Boolean, nullable=False, default=True)
    initial_password = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)


class RosterStudent(Base):
    """
    A student enrolled in the course.

    Attributes:
        id (int): The primary key.
        class_no (str): Class number shown on the roster.
        student_name (str): Full name.
        erp (str): Enrollment number, the student key used everywhere else.
        created_at (datetime): The timestamp when the student was added.
    """
    __tablename__ = "students_roster"

    id = Column(Integer, primary_key=True, index=True)
    class_no = Column(String, nullable=False)
    student_name = Column(String, nullable=False)
    erp = Column(String, nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)


class ClassSession(Base):
    """
    A numbered class meeting that attendance is recorded against.

    Attributes:
        id (int): The primary key.
        session_number (int): Sequential session number (S1, S2, ...).
        session_date (date): Calendar date of the meeting.
        day_of_week (str): Day label, e.g. "Monday".
        start_time (str): Optional start time ("HH:MM").
        end_time (str): Optional end time ("HH:MM").
        zoom_report (dict): Normalized Zoom processing report saved with the attendance.
        zoom_report_saved_at (datetime): When the Zoom report was stored.
        created_at (datetime): The timestamp when the session was created.
    """
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_number = Column(Integer, nullable=False, unique=True)
    session_date = Column(Date, nullable=False)
    day_of_week = Column(String, nullable=False)
    start_time = Column(String, nullable=True)
    end_time = Column(String, nullable=True)
    zoom_report = Column(JSON, nullable=True)
    zoom_report_saved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    attendance = relationship("Attendance", back_populates="session", cascade="all, delete-orphan")


class Attendance(Base):
    """
    Attendance status of one roster student for one session.

    Attributes:
        id (int): The primary key.
        session_id (int): The session the row belongs to.
        erp (str): The roster student's ERP.
        status (str): One of present, absent, excused.
        naming_penalty (bool): Whether a Zoom naming penalty applies.
        created_at (datetime): The timestamp when the row was written.
    """
    __tablename__ = "attendance"
    __table_args__ = (UniqueConstraint("session_id", "erp", name="uq_attendance_session_erp"),)

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    erp = Column(String, ForeignKey("students_roster.erp", ondelete="CASCADE", onupdate="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False, default="present")
    naming_penalty = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    session = relationship("ClassSession", back_populates="attendance")
    student = relationship("RosterStudent")


class Ticket(Base):
    """
    An issue submitted by a student for TA triage.

    Attributes:
        id (int): The primary key.
        entered_erp (str): ERP the student entered on the form.
        roster_name (str): Roster name snapshot at submission time.
        roster_class_no (str): Roster class number snapshot at submission time.
        created_by_email (str): Email of the submitting account.
        status (str): pending or resolved.
        group_type (str): Top-level grouping of the issue.
        category (str): Issue category.
        subcategory (str): Optional subcategory.
        details_text (str): Free-text details.
        details_json (dict): Structured details from the form.
        ta_response (str): Reply written by a TA.
        created_at (datetime): The timestamp when the ticket was created.
        updated_at (datetime): The timestamp when the ticket was last updated.
    """
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    entered_erp = Column(String, nullable=False, index=True)
    roster_name = Column(String, nullable=True)
    roster_class_no = Column(String, nullable=True)
    created_by_email = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    group_type = Column(String, nullable=False)
    category = Column(String, nullable=False)
    subcategory = Column(String, nullable=True)
    details_text = Column(Text, nullable=True)
    details_json = Column(JSON, nullable=True)
    ta_response = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)


class LateDayAssignment(Base):
    """
    An assignment students may spend late days against.

    Assignments are archived (active=False), never deleted, so claim history
    keeps pointing at a real row.

    Attributes:
        id (int): The primary key.
        title (str): Assignment title.
        due_at (datetime): Original deadline; None while the TA has not set one.
        active (bool): False once archived.
        created_at (datetime): The timestamp when the assignment was created.
        updated_at (datetime): The timestamp when the assignment was last updated.
    """
    __tablename__ = "late_day_assignments"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    due_at = Column(DateTime(timezone=True), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)

    claims = relationship("LateDayClaim", back_populates="assignment")


class LateDayClaim(Base):
    """
    A student's claim of late days against one assignment.

    The before/after deadline snapshot is written once and never rewritten,
    even if the assignment or other claims change later.

    Attributes:
        id (int): The primary key.
        assignment_id (int): The assignment claimed against.
        student_email (str): Email of the claiming account.
        student_erp (str): ERP of the claiming student.
        days_used (int): Whole late days spent.
        claimed_at (datetime): When the claim was made.
        due_at_before_claim (datetime): Effective deadline the claim extended.
        due_at_after_claim (datetime): Deadline after the extension.
        created_at (datetime): The timestamp when the row was written.
    """
    __tablename__ = "late_day_claims"
    __table_args__ = (CheckConstraint("days_used > 0", name="ck_late_day_claims_days_used_positive"),)

    id = Column(Integer, primary_key=True, index=True)
    assignment_id = Column(Integer, ForeignKey("late_day_assignments.id"), nullable=False, index=True)
    student_email = Column(String, nullable=False)
    student_erp = Column(String, nullable=False, index=True)
    days_used = Column(Integer, nullable=False)
    claimed_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    due_at_before_claim = Column(DateTime(timezone=True), nullable=False)
    due_at_after_claim = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    assignment = relationship("LateDayAssignment", back_populates="claims")


class LateDayAdjustment(Base):
    """
    Bonus late days granted to a student by a TA.

    Attributes:
        id (int): The primary key.
        student_erp (str): ERP of the student receiving the days.
        days_delta (int): Days added to the student's allowance.
        reason (str): Optional note from the TA.
        created_by_email (str): Email of the granting TA.
        created_at (datetime): The timestamp when the grant was recorded.
    """
    __tablename__ = "late_day_adjustments"

    id = Column(Integer, primary_key=True, index=True)
    student_erp = Column(String, nullable=False, index=True)
    days_delta = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    created_by_email = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)


class SubmissionItem(Base):
    """
    An entry of the submissions dropdown on the issue form.

    Attributes:
        id (int): The primary key.
        label (str): Display label.
        active (bool): Hidden from the form when False.
        sort_order (int): Position on the form.
        created_at (datetime): The timestamp when the entry was created.
    """
    __tablename__ = "submissions_list"

    id = Column(Integer, primary_key=True, index=True)
    label = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)


class PenaltyType(Base):
    """
    A kind of penalty students can contest through a ticket.

    Attributes:
        id (int): The primary key.
        label (str): Display label.
        active (bool): Hidden from the form when False.
        time_window_hours (int): Hours after the session during which a contest is accepted.
        created_at (datetime): The timestamp when the entry was created.
    """
    __tablename__ = "penalty_types"

    id = Column(Integer, primary_key=True, index=True)
    label = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    time_window_hours = Column(Integer, nullable=False, default=24)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)


class RuleException(Base):
    """
    A standing exception to attendance rules for one student.

    Attributes:
        id (int): The primary key.
        erp (str): ERP of the student.
        student_name (str): Name snapshot.
        class_no (str): Class number snapshot.
        issue_type (str): Kind of exception (e.g. camera, naming).
        assigned_day (str): Day the exception applies to.
        notes (str): TA notes.
        active (bool): Whether the exception is in force.
        created_at (datetime): The timestamp when the exception was created.
    """
    __tablename__ = "rule_exceptions"

    id = Column(Integer, primary_key=True, index=True)
    erp = Column(String, nullable=False, index=True)
    student_name = Column(String, nullable=True)
    class_no = Column(String, nullable=True)
    issue_type = Column(String, nullable=True)
    assigned_day = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    active = Column(Boolean, nullable=True, default=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=True)
