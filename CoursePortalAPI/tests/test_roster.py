from datetime import date

import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker

from CoursePortalAPI.database import Base, get_db
from CoursePortalAPI.main import app
from CoursePortalAPI.models import Attendance, ClassSession, RosterStudent, TaAllowlist
from CoursePortalAPI.roster import normalize_name, parse_roster_text


def test_normalize_name():
    assert normalize_name("Aamina,Ghias") == "Aamina Ghias"
    assert normalize_name("ABDUL RAFAY") == "Abdul Rafay"
    assert normalize_name("muhammad_ali-khan") == "Muhammad Ali Khan"
    assert normalize_name("") == ""


def test_parse_roster_text_takes_class_first_and_erp_last():
    text = "1 AAMINA GHIAS 12345\n\n2  Bilal   Ahmed Khan  23456\nbroken 99999\n"
    students, skipped = parse_roster_text(text)
    assert students == [
        {"class_no": "1", "student_name": "Aamina Ghias", "erp": "12345"},
        {"class_no": "2", "student_name": "Bilal Ahmed Khan", "erp": "23456"},
    ]
    assert skipped == ["broken 99999"]


def _seed(db):
    db.add_all(
        [
            RosterStudent(class_no="2", student_name="Bilal Khan", erp="23456"),
            RosterStudent(class_no="1", student_name="Aamina Ghias", erp="12345"),
        ]
    )
    db.commit()


def test_list_roster_orders_and_searches(test_client, db, ta_headers):
    _seed(db)
    data = test_client.get("/roster", headers=ta_headers).json()
    assert data["count"] == 2
    assert [s["erp"] for s in data["students"]] == ["12345", "23456"]

    data = test_client.get("/roster?search=bilal", headers=ta_headers).json()
    assert data["count"] == 1
    assert data["students"][0]["erp"] == "23456"

    data = test_client.get("/roster?limit=1", headers=ta_headers).json()
    assert data["count"] == 2
    assert len(data["students"]) == 1


def test_check_roster(test_client, db, student_headers):
    _seed(db)
    res = test_client.get("/roster/check/12345", headers=student_headers)
    assert res.status_code == 200
    assert res.json() == {"found": True, "student_name": "Aamina Ghias", "class_no": "1"}

    res = test_client.get("/roster/check/00000", headers=student_headers)
    assert res.json() == {"found": False, "student_name": None, "class_no": None}


def test_add_student_normalizes_name_and_rejects_duplicates(test_client, ta_headers):
    payload = {"class_no": "4", "student_name": "sara,ALI", "erp": "34567"}
    res = test_client.post("/roster", json=payload, headers=ta_headers)
    assert res.status_code == 201, res.text
    assert res.json()["student_name"] == "Sara Ali"

    res = test_client.post("/roster", json=payload, headers=ta_headers)
    assert res.status_code == 400

    res = test_client.post("/roster", json={"class_no": "4", "student_name": " ", "erp": "1"}, headers=ta_headers)
    assert res.status_code == 422


def test_changing_erp_moves_attendance(test_client, db, ta_headers):
    _seed(db)
    session = ClassSession(session_number=1, session_date=date(2026, 1, 12), day_of_week="Monday")
    db.add(session)
    db.commit()
    db.add(Attendance(session_id=session.id, erp="12345", status="absent", naming_penalty=False))
    db.commit()
    student = db.query(RosterStudent).filter(RosterStudent.erp == "12345").one()

    res = test_client.put(f"/roster/{student.id}", json={"erp": "54321"}, headers=ta_headers)
    assert res.status_code == 200, res.text
    assert res.json()["erp"] == "54321"

    db.expire_all()
    assert [row.erp for row in db.query(Attendance).all()] == ["54321"]


@pytest.fixture
def enforced_fk_session(tmp_path):
    """Point the app at a SQLite database that enforces foreign keys, like Postgres does."""
    engine = create_engine(f"sqlite:///{tmp_path / 'fk.db'}", connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def _get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    previous = app.dependency_overrides[get_db]
    app.dependency_overrides[get_db] = _get_db
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        app.dependency_overrides[get_db] = previous
        engine.dispose()


def _seed_with_attendance(db):
    db.add(TaAllowlist(email="ta@khi.iba.edu.pk", active=True))
    db.add_all(
        [
            RosterStudent(class_no="1", student_name="Aamina Ghias", erp="11111"),
            RosterStudent(class_no="2", student_name="Bilal Khan", erp="33333"),
        ]
    )
    session = ClassSession(session_number=1, session_date=date(2026, 1, 12), day_of_week="Monday")
    db.add(session)
    db.commit()
    db.add(Attendance(session_id=session.id, erp="11111", status="absent", naming_penalty=False))
    db.commit()
    return db.query(RosterStudent).filter(RosterStudent.erp == "11111").one()


def test_changing_erp_with_foreign_keys_enforced(test_client, enforced_fk_session, make_headers):
    db = enforced_fk_session
    assert db.execute(text("PRAGMA foreign_keys")).scalar() == 1
    student = _seed_with_attendance(db)

    res = test_client.put(f"/roster/{student.id}", json={"erp": "22222"}, headers=make_headers("ta@khi.iba.edu.pk"))
    assert res.status_code == 200, res.text
    assert res.json()["erp"] == "22222"

    db.expire_all()
    assert [(row.erp, row.status) for row in db.query(Attendance).all()] == [("22222", "absent")]


def test_changing_erp_to_taken_one_with_foreign_keys_enforced(test_client, enforced_fk_session, make_headers):
    db = enforced_fk_session
    student = _seed_with_attendance(db)

    res = test_client.put(f"/roster/{student.id}", json={"erp": "33333"}, headers=make_headers("ta@khi.iba.edu.pk"))
    assert res.status_code == 400
    assert res.json()["detail"] == "ERP 33333 is already on the roster"

    db.expire_all()
    assert [row.erp for row in db.query(Attendance).all()] == ["11111"]


def test_delete_student_requires_confirmation(test_client, db, ta_headers):
    _seed(db)
    student = db.query(RosterStudent).filter(RosterStudent.erp == "12345").one()

    res = test_client.delete(f"/roster/{student.id}", headers=ta_headers)
    assert res.status_code == 409
    assert res.json()["detail"]["message"] == "Are you sure you want to delete this student?"

    res = test_client.delete(f"/roster/{student.id}?confirm=true", headers=ta_headers)
    assert res.status_code == 204
    db.expire_all()
    assert db.query(RosterStudent).count() == 1


def test_replace_roster_wipes_attendance_and_inserts(test_client, db, ta_headers):
    _seed(db)
    session = ClassSession(session_number=1, session_date=date(2026, 1, 12), day_of_week="Monday")
    db.add(session)
    db.commit()
    db.add(Attendance(session_id=session.id, erp="12345", status="present", naming_penalty=False))
    db.commit()

    payload = {
        "students": [{"class_no": "9", "student_name": "zara ahmed", "erp": "45678"}],
        "text": "10 Omar Farooq 56789\nnot-a-row",
    }
    res = test_client.put("/roster", json=payload, headers=ta_headers)
    assert res.status_code == 409

    res = test_client.put("/roster?confirm=true", json=payload, headers=ta_headers)
    assert res.status_code == 200, res.text
    assert res.json() == {"count": 2, "skipped": ["not-a-row"]}

    db.expire_all()
    assert sorted(s.erp for s in db.query(RosterStudent).all()) == ["45678", "56789"]
    assert db.query(RosterStudent).filter(RosterStudent.erp == "45678").one().student_name == "Zara Ahmed"
    assert db.query(Attendance).count() == 0


def test_replace_roster_with_nothing_valid_is_rejected_before_confirmation(test_client, db, ta_headers):
    _seed(db)
    res = test_client.put("/roster", json={"text": "only two"}, headers=ta_headers)
    assert res.status_code == 400
    assert res.json()["detail"]["error"] == "roster_empty"
    assert db.query(RosterStudent).count() == 2
