"""Shared test fixtures for backend tests."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from chatvault.api.deps import get_provider
from chatvault.core.crypto import get_cipher
from chatvault.core.database import get_session
from chatvault.models.user import User
from chatvault.services.llm.base import BaseLLMProvider
from chatvault.services.store import EntityStore

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def get_test_session():
    with Session(test_engine) as session:
        yield session


def as_user(user_id: str) -> dict[str, str]:
    """Headers the upstream auth layer would set for an authenticated user."""
    return {"X-User-Id": user_id}


def seed_user(user_id: str, **fields) -> None:
    """Insert a user row directly into the test DB."""
    with Session(test_engine) as session:
        session.add(User(id=user_id, **fields))
        session.commit()


class StubProvider(BaseLLMProvider):
    """Provider that records calls and returns a canned reply or raises."""

    def __init__(self, reply: str = "Hi there", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def generate(self, api_key: str, prompt: str) -> str:
        self.calls.append((api_key, prompt))
        if self.error:
            raise self.error
        return self.reply


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    import chatvault.models  # noqa: F401 - register models
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session():
    with Session(test_engine) as s:
        yield s


@pytest.fixture
def store(session):
    return EntityStore(session, get_cipher())


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def client(provider):
    """FastAPI TestClient with the database and provider patched."""
    with patch("chatvault.core.database.engine", test_engine):
        from chatvault.main import app

        app.dependency_overrides[get_session] = get_test_session
        app.dependency_overrides[get_provider] = lambda: provider

        with TestClient(app) as c:
            yield c

        app.dependency_overrides.clear()
