"""
Pytest fixtures for the template approval workflow test suite.

Provides:
- In-memory SQLite database (real ORM models, immutability listeners on)
- Deterministic clock
- In-process fakes for the collaborator ports (see ``tests.fakes``)
- Lifecycle manager / escalation scanner wired against the fakes
- Structured log capture

The concurrency tests build their own file-backed database; an
in-memory StaticPool database shares one connection (and therefore one
transaction) between all sessions.
"""

import json
import logging
from io import StringIO
from typing import Callable
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from approval_kernel.db.engine import create_tables, drop_tables, session_scope
from approval_kernel.domain.approval import Actor, normalize_identity
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.models.template import TemplateDocumentModel
from approval_kernel.services.escalation_scanner import EscalationScanner
from approval_kernel.services.lifecycle_manager import ApprovalLifecycleManager
from approval_services.document_store import SqlDocumentStore

from tests.fakes import (
    CHANNEL_ID,
    SYSTEM_ACTOR_ID,
    FakeRuleProvider,
    FakeUserDirectory,
    RecordingDispatcher,
    make_rule,
)


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

        def test_something(captured_logs, manager):
            manager.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (background threads, real sleeps)"
    )


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_tables(eng)
    yield eng
    drop_tables(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """A plain session for direct assertions against the database."""
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def rule_provider() -> FakeRuleProvider:
    return FakeRuleProvider([make_rule()])


@pytest.fixture
def user_directory() -> FakeUserDirectory:
    directory = FakeUserDirectory()
    for email in ("a@x.com", "r@x.com", "e1@x.com", "e2@x.com", "submitter@x.com"):
        directory.add(email)
    return directory


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def document_store(clock) -> SqlDocumentStore:
    return SqlDocumentStore(clock)


@pytest.fixture
def submitter(user_directory) -> Actor:
    user = user_directory.users["submitter@x.com"]
    return Actor(user_id=user.user_id, email=user.email)


@pytest.fixture
def actor_for(user_directory) -> Callable[[str], Actor]:
    """Build the Actor for a directory user by email."""

    def _actor(email: str) -> Actor:
        user = user_directory.users.get(normalize_identity(email))
        user_id = user.user_id if user else uuid4()
        return Actor(user_id=user_id, email=email)

    return _actor


@pytest.fixture
def make_template(session_factory, clock) -> Callable[..., UUID]:
    """Insert a template row and return its id."""

    def _make(status: str = "DRAFT", channel_id: str = CHANNEL_ID, name: str = "Welcome") -> UUID:
        with session_scope(session_factory) as s:
            template = TemplateDocumentModel(
                name=name,
                channel_id=channel_id,
                status=status,
                updated_at=clock.now(),
            )
            s.add(template)
            s.flush()
            return template.id

    return _make


@pytest.fixture
def manager(
    session_factory, rule_provider, user_directory, dispatcher, document_store, clock,
) -> ApprovalLifecycleManager:
    return ApprovalLifecycleManager(
        session_factory=session_factory,
        rule_provider=rule_provider,
        user_directory=user_directory,
        dispatcher=dispatcher,
        document_store=document_store,
        clock=clock,
    )


@pytest.fixture
def scanner(session_factory, user_directory, dispatcher, clock) -> EscalationScanner:
    return EscalationScanner(
        session_factory=session_factory,
        user_directory=user_directory,
        dispatcher=dispatcher,
        system_actor_id=SYSTEM_ACTOR_ID,
        clock=clock,
    )
