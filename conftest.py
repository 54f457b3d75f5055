import os
import tempfile

import pytest

TEST_DATABASE_URL = "sqlite:///./job-board-test.db"

# Point the app at the test database and a scratch upload dir before it is imported,
# so background analyses (which open their own sessions) hit the same database.
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="job-board-uploads-"))
os.environ["AUTH_ENABLED"] = "false"
os.environ.setdefault("AWS_EMF_ENVIRONMENT", "local")
os.environ.setdefault("LOG_FORMAT", "console")

from sqlalchemy.orm import sessionmaker  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

# --- Alembic Imports ---
from alembic.config import Config  # noqa: E402
from alembic import command  # noqa: E402

# Import app and DB dependency function first
from main import app, get_db  # noqa: E402

# Import database components needed for setup
from database import Base, engine as app_engine, make_engine  # noqa: E402
import logic  # noqa: E402

test_engine = make_engine(TEST_DATABASE_URL)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def _remove_db_files(db_path: str) -> None:
    for path in (db_path, f"{db_path}-wal", f"{db_path}-shm"):
        if os.path.exists(path):
            try:
                os.unlink(path)
            except OSError as e:
                print(f"Error removing test database file {path}: {e}")


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models and stamp with Alembic head."""
    db_path = TEST_DATABASE_URL.split("///")[-1]
    # The app engine already opened the file when main was imported
    app_engine.dispose()
    _remove_db_files(db_path)

    Base.metadata.create_all(bind=test_engine)

    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    command.stamp(alembic_cfg, "head")

    yield  # Tests run here

    test_engine.dispose()
    app_engine.dispose()
    _remove_db_files(db_path)


@pytest.fixture(scope="function", autouse=True)
def clean_tables(setup_test_database):
    """Empty every table and the LLM cache after each test."""
    yield
    with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    logic._LLM_CACHE.clear()


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
    """Route the get_db dependency to the test database, one session per request."""

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
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture(scope="function")
def test_client(override_get_db):
    """Provides a test client configured with our test database session."""
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def upload_dir():
    return os.environ["UPLOAD_DIR"]
