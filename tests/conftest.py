import os
from datetime import timedelta

# Secrets must exist before importing refresh_guard.main (it calls require_token_secrets() at import time).
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test_access_secret_0123456789")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test_refresh_secret_0123456789")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from refresh_guard.core.base import Base
from refresh_guard.core.config import TokenSettings
from refresh_guard.core.security import hash_password

# Import models so they register with SQLAlchemy metadata.
from refresh_guard.models.user import User
from refresh_guard.models.refresh_token import RefreshToken  # noqa: F401

from refresh_guard.core.database import get_db
from refresh_guard.dependencies.auth import get_token_settings
from refresh_guard.services.rotation import RotationEngine
from refresh_guard.services.token_issuer import TokenIssuer
from refresh_guard.services.token_store import InMemoryTokenStore
from refresh_guard.services.users import Subject

TEST_PASSWORD = "Correct-Horse-42"


class FakeSubjectDirectory:
    """Dict-backed subject directory for engine tests."""

    def __init__(self) -> None:
        self.subjects: dict[str, Subject] = {}

    def add(self, subject_id: str, *, email: Optional[str] = None, roles=("EMPLOYEE",), is_active: bool = True) -> Subject:
        subject = Subject(
            id=subject_id,
            email=email or f"{subject_id}@example.com",
            roles=tuple(roles),
            is_active=is_active,
        )
        self.subjects[subject_id] = subject
        return subject

    def find_by_id(self, subject_id: str) -> Optional[Subject]:
        return self.subjects.get(subject_id)


@pytest.fixture()
def token_settings():
    return TokenSettings(
        access_secret="test_access_secret_0123456789",
        refresh_secret="test_refresh_secret_0123456789",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
    )


@pytest.fixture()
def memory_store():
    return InMemoryTokenStore()


@pytest.fixture()
def issuer(token_settings, memory_store):
    return TokenIssuer(token_settings, memory_store)


@pytest.fixture()
def directory():
    d = FakeSubjectDirectory()
    d.add("u1", email="u1@example.com", roles=("EMPLOYEE",))
    return d


@pytest.fixture()
def engine(issuer, memory_store, directory):
    return RotationEngine(issuer, memory_store, directory)


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # SQLite ignores foreign keys unless asked; enforce them like Postgres does.
    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # The in-memory DB persists across tests with StaticPool. Reset schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def app(db_session, token_settings):
    import refresh_guard.main as main

    fastapi_app = main.app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_token_settings] = lambda: token_settings
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def user(db_session):
    u = User(
        email="test@example.com",
        password_hash=hash_password(TEST_PASSWORD),
        roles=["EMPLOYEE"],
        is_active=True,
    )
    db_session.add(u)
    db_session.commit()
    db_session.refresh(u)
    return u


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c
