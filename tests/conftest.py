"""
Shared fixtures: an in-memory database per test and clean global state.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mediaportal.lib.db import drop_db, init_db
from mediaportal.lib.metrics import reset_metrics
from mediaportal.lib.rate_limit import get_rate_limiter


@pytest.fixture
def engine():
    """SQLite in-memory engine shared across threads (asyncio.to_thread)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    drop_db(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clean_global_state():
    """Reset process-wide counters and rate windows around each test."""
    reset_metrics()
    get_rate_limiter().reset()
    yield
    reset_metrics()
    get_rate_limiter().reset()
