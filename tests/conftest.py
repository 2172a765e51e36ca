"""
Pytest fixtures for the approval kernel test suite.

Provides:
- A SQLite file database per test (thread-safe, so concurrency tests can
  share it)
- A sample organization directory and chain recipes
- A deterministic clock
- A fully wired WorkflowEngine with a recording notifier
- Structured log capture

Environment Variables:
- DATABASE_URL: optional database URL.  When unset, each test gets its own
  SQLite file under pytest's tmp_path.
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone
from io import StringIO

import pytest

from approval_engines.chain_builder import ChainBuilder
from approval_engines.transitions import WorkflowPolicy
from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.approval import Actor
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.org import OrgDirectory
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.locks import RequestLockRegistry
from approval_kernel.services.notifier import NotificationDispatcher
from approval_kernel.services.workflow_engine import WorkflowEngine
from tests.sample_org import HR_OFFICER, INVOICE_RECIPE, LEAVE_RECIPE, make_directory


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
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow_engine):
            workflow_engine.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_request_started" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Clock fixed at 2024-01-01 09:00 UTC; advance it explicitly."""
    return DeterministicClock(datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc))


# =============================================================================
# Organization
# =============================================================================


@pytest.fixture
def org_directory() -> OrgDirectory:
    return make_directory()


@pytest.fixture
def chain_builder(org_directory) -> ChainBuilder:
    return ChainBuilder(org_directory, [LEAVE_RECIPE, INVOICE_RECIPE])


@pytest.fixture
def policy() -> WorkflowPolicy:
    return WorkflowPolicy()


@pytest.fixture
def hr_actor() -> Actor:
    return Actor(email=HR_OFFICER.email, role="hr", name=HR_OFFICER.name)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'approvals.db'}"


@pytest.fixture
def session_factory(db_url):
    """Fresh schema per test; the engine is reset afterwards."""
    init_engine_from_url(db_url, pool_size=10, max_overflow=10)
    drop_tables()
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def session(session_factory):
    """A plain session for direct model and service tests."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Notifications and engine
# =============================================================================


class RecordingNotifier:
    """Thread-safe notifier that keeps every event it receives."""

    name = "recording"

    def __init__(self):
        self._lock = threading.Lock()
        self._events = []

    def send(self, event):
        with self._lock:
            self._events.append(event)

    @property
    def events(self):
        with self._lock:
            return list(self._events)

    def to(self, recipient):
        return [e for e in self.events if e.recipient == recipient]

    def clear(self):
        with self._lock:
            self._events.clear()


@pytest.fixture
def recording_notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher(recording_notifier):
    d = NotificationDispatcher([recording_notifier], timeout_seconds=2.0, max_workers=4)
    yield d
    d.shutdown(wait=True)


@pytest.fixture
def workflow_engine(
    session_factory, chain_builder, policy, deterministic_clock, dispatcher,
) -> WorkflowEngine:
    return WorkflowEngine(
        session_factory,
        chain_builder,
        policy=policy,
        clock=deterministic_clock,
        dispatcher=dispatcher,
        locks=RequestLockRegistry(),
    )
