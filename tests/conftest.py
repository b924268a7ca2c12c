"""
Shared fixtures: in-memory SQLite store and structlog configured for capture
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shortage_sync import models  # noqa: F401 - registers tables on Base.metadata
from shortage_sync.database import Base
from shortage_sync.services.monitoring.logging import configure_structlog

configure_structlog(json_output=False)


@pytest.fixture
def engine():
    """Single shared in-memory connection, usable from worker threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    db = session_factory()
    yield db
    db.close()
