import os
import uuid
from pathlib import Path

# Must be set before the app (and aws_embedded_metrics) are imported
TEST_DATABASE_URL = "sqlite:///./resume-optimizer-test.db"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ.setdefault("AWS_EMF_ENVIRONMENT", "Local")
os.environ.setdefault("LOG_FORMAT", "console")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

# --- Alembic Imports ---
from alembic.config import Config
from alembic import command
# --- End Alembic Imports ---

# Import app and DB dependency function first
from main import app, get_db, get_current_user, get_settings

# Import database components needed for setup
import database
from database import Base
import models
from settings import Settings

ROOT = Path(__file__).resolve().parent

test_engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

TEST_SETTINGS = Settings(
    _env_file=None,
    openai_api_key="sk-test",
    llm_model="gpt-4o-mini",
    render_service_url="https://render.test/latex-convert",
    render_timeout_seconds=5.0,
    auth_enabled=False,
)


def _remove_db_files(db_path: str) -> None:
    for suffix in ("", "-wal", "-shm"):
        path = db_path + suffix
        if os.path.exists(path):
            os.unlink(path)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models and stamp with Alembic head."""
    db_path = TEST_DATABASE_URL.split("///")[-1]
    # main.py created tables through the app engine on import; start clean
    database.engine.dispose()
    _remove_db_files(db_path)

    Base.metadata.create_all(bind=test_engine)

    alembic_cfg = Config(str(ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(ROOT / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    command.stamp(alembic_cfg, "head")

    yield  # Tests run here

    test_engine.dispose()
    database.engine.dispose()
    _remove_db_files(db_path)


@pytest.fixture(scope="function")
def db_session(setup_test_database):
    """Yields a SQLAlchemy session directly from the test factory."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def test_settings() -> Settings:
    return TEST_SETTINGS.model_copy()


@pytest.fixture(scope="function")
def test_user(db_session) -> models.User:
    """A fresh user per test so rows never leak between tests."""
    sub = f"sub-{uuid.uuid4().hex}"
    user = models.User(email=f"{sub}@example.com", auth_sub=sub)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def override_get_db():
    """Override the get_db dependency to use our test database.

    This creates a new session for each API call, allowing proper
    transaction handling within FastAPI endpoints.
    """

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
def test_client(override_get_db, test_settings):
    """Test client on the test database with test settings injected."""
    app.dependency_overrides[get_settings] = lambda: test_settings
    yield TestClient(app)
    app.dependency_overrides.pop(get_settings, None)


@pytest.fixture(scope="function")
def authed_client(test_client, test_user):
    """Test client whose requests run as ``test_user``."""

    def _override_get_current_user():
        with TestSessionLocal() as db:
            return db.get(models.User, test_user.id)

    app.dependency_overrides[get_current_user] = _override_get_current_user
    yield test_client
    app.dependency_overrides.pop(get_current_user, None)
