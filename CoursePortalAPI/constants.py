"""
Global constants for the CoursePortalAPI.

This module contains constant values used across the application, such as
the late-day allowance and the attendance status vocabulary.
"""

BASE_ALLOWANCE = 3
"""int: Late days every student starts with before TA-granted adjustments."""

HOURS_PER_LATE_DAY = 24

# Availability states, in the order the classifier checks them
AVAILABILITY_ARCHIVED = "archived"
AVAILABILITY_AWAITING_DEADLINE = "awaiting_deadline"
AVAILABILITY_CLOSED = "closed"
AVAILABILITY_NO_BALANCE = "no_balance"
AVAILABILITY_CLAIMABLE = "claimable"

AVAILABILITY_STATES = [
    AVAILABILITY_ARCHIVED,
    AVAILABILITY_AWAITING_DEADLINE,
    AVAILABILITY_CLOSED,
    AVAILABILITY_NO_BALANCE,
    AVAILABILITY_CLAIMABLE,
]

STATUS_PRESENT = "present"
STATUS_ABSENT = "absent"
STATUS_EXCUSED = "excused"

ATTENDANCE_STATUS_CYCLE = [STATUS_PRESENT, STATUS_ABSENT, STATUS_EXCUSED]
"""list[str]: Manual status toggle order; the last entry wraps to the first."""

STATUS_SYMBOLS = {
    STATUS_PRESENT: "P",
    STATUS_ABSENT: "A",
    STATUS_EXCUSED: "E",
}
UNMARKED_SYMBOL = "-"

TICKET_PENDING = "pending"
TICKET_RESOLVED = "resolved"

PUBLIC_ATTENDANCE_SHEET_NAME = "Public Attendance Snapshot"
PUBLIC_ATTENDANCE_SNAPSHOT_TYPE = "public_attendance_snapshot"

MIN_TA_PASSWORD_LENGTH = 6

TEST_STUDENT_ERP = "00000"
"""str: ERP reserved for the TA test student; never shown on the public board or sheet."""

DEFAULT_TEST_STUDENT_CLASS_NO = "TEST"
DEFAULT_TEST_STUDENT_NAME = "Test Student"

SETTINGS_ROW_ID = 1
"""int: Fixed primary key of the single app_settings row."""
