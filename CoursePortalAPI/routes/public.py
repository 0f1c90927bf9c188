from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from CoursePortalAPI.attendance import hide_test_student, normalize_public_attendance_board_data
from CoursePortalAPI.database import get_db
from CoursePortalAPI.procedures import get_public_attendance_board
from CoursePortalAPI.routes.streams import change_stream
from CoursePortalAPI.schemas import PublicBoardResponse

router = APIRouter()


@router.get("/public/attendance-board", response_model=PublicBoardResponse)
def read_public_attendance_board(db: Session = Depends(get_db)):
    """
    The public attendance board: every roster student except the TA test
    student, with per-session statuses.

    Returns:
        PublicBoardResponse: Sessions ascending by number and the students.
    """
    return hide_test_student(normalize_public_attendance_board_data(get_public_attendance_board(db)))


@router.post("/rest/v1/rpc/get_public_attendance_board")
def rpc_public_attendance_board(db: Session = Depends(get_db)):
    # Procedure-call form used by the sheet sync script
    return get_public_attendance_board(db)


@router.get("/public/attendance-board/stream")
def public_attendance_stream():
    return change_stream("attendance")
