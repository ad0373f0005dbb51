import os

import pytest
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

TEST_DATABASE_URL = "sqlite:///./jobconnect-test.db"

# Point the app at the test database before it builds its engine
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("LOG_FORMAT", "console")

# --- Alembic Imports ---
from alembic.config import Config  # noqa: E402
from alembic import command  # noqa: E402

from main import app, get_db  # noqa: E402
import database  # noqa: E402
from database import Base, make_engine  # noqa: E402
import models  # noqa: E402

test_engine = make_engine(TEST_DATABASE_URL)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def _remove_sqlite_files(db_path: str) -> None:
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models and stamp with Alembic head."""
    db_path = TEST_DATABASE_URL.split("///")[-1]
    # main created tables through its own engine at import; release that file first
    database.engine.dispose()
    _remove_sqlite_files(db_path)

    Base.metadata.create_all(bind=test_engine)

    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    command.stamp(alembic_cfg, "head")

    yield

    test_engine.dispose()
    database.engine.dispose()
    _remove_sqlite_files(db_path)


@pytest.fixture(autouse=True)
def clean_tables(setup_test_database):
    """Each test starts from empty tables."""
    yield
    with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function")
def db_session(setup_test_database):
    """Yields a SQLAlchemy session directly from the test factory."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def override_get_db():
    """Route the app's get_db dependency to the test database."""

    def _override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    original = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = _override_get_db

    yield

    if original:
        app.dependency_overrides[get_db] = original
    else:
        del app.dependency_overrides[get_db]


@pytest.fixture(scope="function")
def test_client(override_get_db):
    """Provides a test client configured with our test database session."""
    return TestClient(app)


# --- Identity / fixture helpers ---
def as_identity(identity_id: str, email: str = None) -> dict:
    """Request headers that make the local-mode auth resolve to this identity."""
    headers = {"X-Identity-Id": identity_id}
    if email:
        headers["X-Identity-Email"] = email
    return headers


def make_profile(db, identity_id: str, role: str = models.ROLE_JOB_SEEKER, **overrides) -> models.User:
    """Insert a completed profile directly."""
    fields = {
        "identity_id": identity_id,
        "role": role,
        "email": f"{identity_id}@example.com",
        "name": identity_id.replace("-", " ").title(),
        "is_admin": False,
    }
    if role == models.ROLE_EMPLOYER:
        fields.update(
            company_name="Acme Corp",
            company_profile="We make everything.",
            company_website="https://acme.example.com",
        )
    else:
        fields.update(
            skills="python, sql",
            education="BSc Computer Science",
            experience="3 years backend",
            resume_url="https://files.example.com/cv.pdf",
        )
    fields.update(overrides)
    user = models.User(**fields)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


JOB_PAYLOAD = {
    "title": "Backend Engineer",
    "description": "Build APIs with Python and PostgreSQL.",
    "salary": "$120k",
    "location": "Lagos",
    "job_type": "full_time",
    "category": "technology",
    "company_name": "Acme Corp",
    "company_website": "https://acme.example.com",
}

APPLICATION_PAYLOAD = {
    "name": "Jo Seeker",
    "email": "jo@example.com",
    "resume_url": "https://files.example.com/jo.pdf",
    "cover_letter": "I would love to build your APIs.",
}


@pytest.fixture
def employer(db_session) -> models.User:
    return make_profile(db_session, "employer-e", role=models.ROLE_EMPLOYER)


@pytest.fixture
def seeker(db_session) -> models.User:
    return make_profile(db_session, "seeker-j", role=models.ROLE_JOB_SEEKER)


@pytest.fixture
def admin(db_session) -> models.User:
    return make_profile(db_session, "admin-a", role=models.ROLE_EMPLOYER, is_admin=True)


@pytest.fixture
def posted_job(test_client, employer) -> dict:
    response = test_client.post("/jobs/", json=JOB_PAYLOAD, headers=as_identity(employer.identity_id))
    assert response.status_code == 201
    return response.json()
