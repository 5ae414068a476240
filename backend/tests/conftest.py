import os

# Keep app startup off the on-disk database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from cueflow.database import get_match_store
from cueflow.main import app
from cueflow.services.match_store import SqlMatchStore

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. sqlite:///:memory: with StaticPool so every session shares one database
# 2. check_same_thread=False required for TestClient/threaded access
# 3. Tables created and dropped per test (see session_fixture)
# 4. App store dependency overridden to use test_engine (see client_fixture)
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on a fresh schema"""
    from cueflow.models.match_record import MatchRecord  # noqa: F401

    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="store")
def store_fixture(session: Session):
    """Match store on the test engine"""
    return SqlMatchStore(test_engine)


@pytest.fixture(name="client")
def client_fixture(store: SqlMatchStore):
    """Provide a test client with the match store overridden

    Override MUST be set BEFORE TestClient() and stay in place for the
    entire duration so the app never touches its own engine's store.
    """
    app.dependency_overrides[get_match_store] = lambda: store

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
