from datetime import date, datetime, timezone

from CoursePortalAPI.attendance import (
    TaTestStudentSettings,
    apply_ta_test_student_to_board,
    build_snapshot_payload,
    normalize_public_attendance_board_data,
)
from CoursePortalAPI.models import Attendance, ClassSession, RosterStudent
from CoursePortalAPI.routes.settings import get_app_settings


def test_normalize_sorts_sessions_and_drops_rows_without_ids():
    board = normalize_public_attendance_board_data(
        {
            "sessions": [
                {"id": "s3", "session_number": "3", "session_date": "2026-01-19"},
                {"id": "s1", "session_number": 1, "session_date": "2026-01-12", "day_of_week": "Monday"},
                {"session_number": 2},
                "junk",
                {"id": "s2", "session_number": 2},
            ],
            "students": [
                {"erp": "12345", "student_name": "Aamina Ghias", "total_absences": "2", "session_status": {"s1": "absent"}},
                {"student_name": "No Erp"},
                None,
            ],
        }
    )
    assert [s["id"] for s in board["sessions"]] == ["s1", "s2", "s3"]
    assert board["sessions"][2]["session_number"] == 3
    assert board["sessions"][1]["day_of_week"] == ""
    assert [s["erp"] for s in board["students"]] == ["12345"]
    student = board["students"][0]
    assert student["total_absences"] == 2
    assert student["total_penalties"] == 0
    assert student["class_no"] == ""
    assert student["penalty_entries"] == []


def test_normalize_tolerates_garbage():
    assert normalize_public_attendance_board_data(None) == {"sessions": [], "students": []}
    assert normalize_public_attendance_board_data({"sessions": "x", "students": {}}) == {"sessions": [], "students": []}


def test_penalty_entries_are_sorted_and_filtered():
    board = normalize_public_attendance_board_data(
        {
            "students": [
                {
                    "erp": "12345",
                    "penalty_entries": [
                        {"session_id": "s4", "session_number": 4, "details": {"reason": "name"}},
                        {"session_number": 2},
                        {"session_id": "s2", "session_number": 2, "details": "text"},
                    ],
                }
            ]
        }
    )
    entries = board["students"][0]["penalty_entries"]
    assert [e["session_id"] for e in entries] == ["s2", "s4"]
    assert entries[0]["details"] is None
    assert entries[1]["details"] == {"reason": "name"}


def test_snapshot_payload_shape():
    board = {
        "sessions": [{"id": "s1", "session_number": 1}, {"id": "s2", "session_number": 2}],
        "students": [
            {
                "class_no": "1",
                "student_name": "Aamina Ghias",
                "erp": "12345",
                "total_penalties": 1,
                "total_absences": 1,
                "session_status": {"s1": "excused", "s2": "absent"},
            },
            {"class_no": "2", "student_name": "Bilal Khan", "erp": "23456", "session_status": {}},
        ],
    }
    payload = build_snapshot_payload(board, source="test", generated_at=datetime(2026, 1, 12, 9, 30, tzinfo=timezone.utc))
    assert payload["type"] == "public_attendance_snapshot"
    assert payload["target_sheet"] == "Public Attendance Snapshot"
    assert payload["generated_at"] == "2026-01-12T09:30:00Z"
    assert payload["headers"] == ["Class", "Name", "ERP", "Penalties", "Absences", "S1", "S2"]
    assert payload["rows"] == [
        ["1", "Aamina Ghias", "12345", 1, 1, "E", "A"],
        ["2", "Bilal Khan", "23456", 0, 0, "-", "-"],
    ]
    assert payload["metadata"] == {"students": 2, "sessions": 2, "source": "test"}


def test_public_board_endpoint(test_client, db):
    first = ClassSession(session_number=2, session_date=date(2026, 1, 14), day_of_week="Wednesday")
    second = ClassSession(session_number=1, session_date=date(2026, 1, 12), day_of_week="Monday")
    db.add_all([first, second, RosterStudent(class_no="1", student_name="Aamina Ghias", erp="12345")])
    db.commit()
    db.add_all(
        [
            Attendance(session_id=second.id, erp="12345", status="absent", naming_penalty=True),
            Attendance(session_id=first.id, erp="12345", status="present", naming_penalty=False),
        ]
    )
    db.commit()

    res = test_client.get("/public/attendance-board")
    assert res.status_code == 200, res.text
    data = res.json()
    assert [s["session_number"] for s in data["sessions"]] == [1, 2]
    student = data["students"][0]
    assert student["total_absences"] == 1
    assert student["total_penalties"] == 1
    assert student["session_status"] == {str(second.id): "absent", str(first.id): "present"}
    assert student["penalty_entries"][0]["session_date"] == "2026-01-12"

    raw = test_client.post("/rest/v1/rpc/get_public_attendance_board")
    assert raw.status_code == 200
    assert len(raw.json()["students"]) == 1


BOARD_WITH_TEST_STUDENT = {
    "sessions": [{"id": "s1", "session_number": 1, "session_date": "2026-02-01", "day_of_week": "Sunday"}],
    "students": [
        {
            "class_no": "10",
            "student_name": "Regular Student",
            "erp": "12345",
            "total_penalties": 1,
            "total_absences": 2,
            "session_status": {"s1": "present"},
            "penalty_entries": [],
        },
        {
            "class_no": "TEST",
            "student_name": "Existing Test",
            "erp": "00000",
            "total_penalties": 0,
            "total_absences": 0,
            "session_status": {"s1": "present"},
            "penalty_entries": [],
        },
    ],
}


def test_ta_board_hides_test_student_when_disabled():
    board = apply_ta_test_student_to_board(BOARD_WITH_TEST_STUDENT, TaTestStudentSettings(show_in_ta=False))
    assert [s["erp"] for s in board["students"]] == ["12345"]
    assert board["sessions"] == BOARD_WITH_TEST_STUDENT["sessions"]


def test_ta_board_applies_overrides_when_enabled():
    others_only = dict(BOARD_WITH_TEST_STUDENT, students=BOARD_WITH_TEST_STUDENT["students"][:1])
    settings = TaTestStudentSettings(
        show_in_ta=True,
        overrides={
            "class_no": "2",
            "student_name": "QA Test Student",
            "total_absences": 20,
            "total_penalties": 7,
            "session_status": {"s1": "absent"},
        },
    )
    board = apply_ta_test_student_to_board(others_only, settings)
    assert [s["erp"] for s in board["students"]] == ["00000", "12345"]
    test_student = board["students"][0]
    assert test_student["student_name"] == "QA Test Student"
    assert test_student["total_absences"] == 20
    assert test_student["total_penalties"] == 7
    assert test_student["session_status"] == {"s1": "absent"}


def test_ta_board_keeps_real_test_student_values_without_overrides():
    board = apply_ta_test_student_to_board(BOARD_WITH_TEST_STUDENT, TaTestStudentSettings(show_in_ta=True))
    test_student = next(s for s in board["students"] if s["erp"] == "00000")
    assert test_student["student_name"] == "Existing Test"
    assert test_student["session_status"] == {"s1": "present"}
    # numeric class numbers sort before the TEST label
    assert [s["erp"] for s in board["students"]] == ["12345", "00000"]


def test_snapshot_never_includes_test_student():
    payload = build_snapshot_payload(BOARD_WITH_TEST_STUDENT, source="test")
    assert [row[2] for row in payload["rows"]] == ["12345"]
    assert payload["metadata"]["students"] == 1


def _seed_board_with_test_student(db):
    session = ClassSession(session_number=1, session_date=date(2026, 1, 12), day_of_week="Monday")
    db.add_all(
        [
            session,
            RosterStudent(class_no="1", student_name="Aamina Ghias", erp="12345"),
            RosterStudent(class_no="TEST", student_name="Test Student", erp="00000"),
        ]
    )
    db.commit()
    db.add(Attendance(session_id=session.id, erp="00000", status="absent", naming_penalty=False))
    db.commit()
    return session


def test_public_board_hides_test_student(test_client, db):
    _seed_board_with_test_student(db)
    get_app_settings(db).show_test_student_in_ta = True
    db.commit()

    res = test_client.get("/public/attendance-board")
    assert res.status_code == 200, res.text
    assert [s["erp"] for s in res.json()["students"]] == ["12345"]


def test_ta_board_follows_settings(test_client, db, ta_headers, student_headers):
    _seed_board_with_test_student(db)

    assert test_client.get("/ta/attendance-board", headers=student_headers).status_code == 403
    res = test_client.get("/ta/attendance-board", headers=ta_headers)
    assert res.status_code == 200, res.text
    assert [s["erp"] for s in res.json()["students"]] == ["12345"]

    res = test_client.patch(
        "/settings",
        json={"show_test_student_in_ta": True, "test_student_overrides": {"student_name": "QA Student", "total_absences": 5}},
        headers=ta_headers,
    )
    assert res.status_code == 200, res.text

    res = test_client.get("/ta/attendance-board", headers=ta_headers)
    students = res.json()["students"]
    assert [s["erp"] for s in students] == ["12345", "00000"]
    assert students[1]["student_name"] == "QA Student"
    assert students[1]["class_no"] == "TEST"
    assert students[1]["total_absences"] == 5
    # saved overrides carry an empty status map, so the real absence is replaced
    assert students[1]["session_status"] == {}
