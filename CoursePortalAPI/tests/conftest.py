import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

DEFAULT_SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
SQLALCHEMY_DATABASE_URL = os.getenv("TEST_DATABASE_URL") or DEFAULT_SQLALCHEMY_DATABASE_URL

# Ensure the application itself uses the test database instead of the production default.
os.environ.setdefault("DATABASE_URL", SQLALCHEMY_DATABASE_URL)
os.environ.setdefault("NTFY_ENABLED", "false")
os.environ.setdefault("SHEET_AUTO_SYNC", "false")

from CoursePortalAPI import config
from CoursePortalAPI.main import app
from CoursePortalAPI.database import Base, get_db
from CoursePortalAPI.models import TaAllowlist

TA_EMAIL = "ta@khi.iba.edu.pk"
STUDENT_EMAIL = "12345@khi.iba.edu.pk"
STUDENT_ERP = "12345"


def _create_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


engine = _create_engine(SQLALCHEMY_DATABASE_URL)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

try:
    with engine.begin() as connection:
        Base.metadata.drop_all(bind=connection)
        Base.metadata.create_all(bind=connection)
except OperationalError as exc:
    raise RuntimeError(
        "Unable to initialize the database schema for tests. "
        "Set TEST_DATABASE_URL to a reachable database URL or ensure SQLite is available."
    ) from exc


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


def make_token(email: str, expires_in: int = 3600) -> str:
    payload = {
        "sub": email,
        "email": email,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, config.AUTH_JWT_SECRET, algorithm=config.AUTH_JWT_ALGORITHM)


def auth_headers(email: str) -> dict:
    return {"Authorization": f"Bearer {make_token(email)}"}


@pytest.fixture(autouse=True)
def clean_tables():
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())
    yield


@pytest.fixture(scope="module")
def test_client():
    with TestClient(app) as client:
        yield client


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ta_headers(db):
    db.add(TaAllowlist(email=TA_EMAIL, active=True, initial_password="welcome1"))
    db.commit()
    return auth_headers(TA_EMAIL)


@pytest.fixture
def student_headers():
    return auth_headers(STUDENT_EMAIL)


@pytest.fixture
def make_headers():
    return auth_headers
