"""
Pytest fixtures for the ADR orchestration test suite.

Provides:
- In-memory SQLite sessions (StaticPool) for service tests
- A file-backed SQLite database for tests that drive the worker thread or
  open several sessions at once (pipeline, run recorder, queue)
- A deterministic clock pinned to 2026-01-15 12:00 UTC
- A scripted fake vendor client

PostgreSQL-only behaviour (row locks, READ COMMITTED) is exercised by tests
marked ``postgres``, which read ADR_TEST_DATABASE_URL and skip without it.
"""

import json
import logging
import os
from io import StringIO

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import adr_orchestration.models  # noqa: F401  (registers tables on Base.metadata)
from adr_config.schema import OrchestrationSettings
from adr_kernel.db.base import Base
from adr_kernel.db.engine import (
    create_tables,
    drop_tables,
    enable_sqlite_savepoints,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from adr_kernel.domain.clock import DeterministicClock
from adr_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

from tests.support import NOW, FakeVendorClient


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture adr logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, factory):
            factory.create_jobs(TODAY)
            logs = captured_logs()
            assert any(r["message"] == "job_creation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("adr")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of the test (one connection)."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """Module-level engine on a SQLite file, as ``from_settings`` builds it.

    Sessions get their own pooled connections; SQLite serializes their
    transactions, so a test must commit before the worker or the run
    recorder writes.
    """
    init_engine_from_url(f"sqlite:///{tmp_path / 'adr.db'}")
    create_tables()
    yield get_session_factory()
    reset_engine()


@pytest.fixture
def postgres_session_factory():
    url = os.environ.get("ADR_TEST_DATABASE_URL")
    if not url:
        pytest.skip("ADR_TEST_DATABASE_URL not set")
    init_engine_from_url(url)
    drop_tables()
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(fixed_time=NOW)


@pytest.fixture
def settings():
    return OrchestrationSettings(
        max_retries=3,
        max_parallel_requests=4,
        batch_size=100,
        setup_batch_size=50,
        daily_status_check_delay_days=1,
    )


@pytest.fixture
def vendor():
    return FakeVendorClient()
