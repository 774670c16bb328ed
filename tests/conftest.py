"""Shared pytest fixtures for Invitide."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from invitide import auth, database, maintenance, storage
from invitide.auth import Identity
from invitide.models import Base


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    maintenance.engine = engine
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.commit()
        db.close()


@pytest.fixture()
def make_identity(session):
    """Register an account and return its :class:`Identity`."""

    counter = {"n": 0}

    def _make(display_name: str = "Guest", email: str | None = None) -> Identity:
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        profile = auth.sign_up(
            session, email=email, password="hunter22", display_name=display_name
        )
        session.commit()
        return Identity(id=profile.id, email=email)

    return _make
