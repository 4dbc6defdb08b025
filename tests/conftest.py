"""
Pytest fixtures for the approval engine test suite.

Provides:
- A fresh database per test (temporary SQLite file, or the database named
  by DATABASE_URL)
- Kernel services wired to a deterministic clock
- Actor context factories and the standard scenario policy
- Captured structured logs

Environment Variables:
- DATABASE_URL: optional PostgreSQL connection URL.  When unset, each test
  gets its own SQLite file under pytest's tmp_path.
"""

import json
import logging
import os
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from approval_config import get_active_config
from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.approval import AuthorizationContext
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.approval_service import ApprovalService
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.policy_service import PolicyService
from approval_services.gateway import ApprovalGateway
from tests.factories import large_refund_draft


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
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

        def test_something(captured_logs, gateway):
            gateway.submit_approval(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_request_submitted" for r in logs)
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


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    """DATABASE_URL when set, else a SQLite file private to this test."""
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'approvals.db'}"


@pytest.fixture
def db_engine(database_url):
    """Engine with a freshly created schema."""
    engine = init_engine_from_url(database_url, echo=False, pool_size=10, max_overflow=10)
    drop_tables()
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """Per-test session; services only flush, so teardown rolls back."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Clock and kernel services
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Clock fixed at 2024-01-01 12:00 UTC; advance it explicitly."""
    return DeterministicClock()


@pytest.fixture
def auditor_service(session, deterministic_clock):
    return AuditorService(session, deterministic_clock)


@pytest.fixture
def policy_service(session, auditor_service, deterministic_clock):
    return PolicyService(session, auditor_service, clock=deterministic_clock)


@pytest.fixture
def approval_service(session, auditor_service, deterministic_clock):
    return ApprovalService(session, auditor_service, clock=deterministic_clock)


@pytest.fixture
def approval_config():
    """The bundled default configuration set."""
    return get_active_config()


@pytest.fixture
def gateway(session_factory, approval_config, deterministic_clock):
    """Gateway over the per-test database, with the seed policies unloaded."""
    return ApprovalGateway(
        session_factory,
        config=approval_config,
        clock=deterministic_clock,
    )


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def make_actor():
    """Factory for AuthorizationContext values.

    ``make_actor("mgr-1", "manager", scope_id="park-1")``
    """

    def _make(actor_id: str, *roles: str, scope_id: str | None = None) -> AuthorizationContext:
        return AuthorizationContext(actor_id=actor_id, roles=frozenset(roles), scope_id=scope_id)

    return _make


@pytest.fixture
def requester(make_actor):
    return make_actor("clerk-1", "front_desk")


@pytest.fixture
def manager(make_actor):
    return make_actor("manager-1", "manager")


@pytest.fixture
def owner(make_actor):
    return make_actor("owner-1", "owner")


@pytest.fixture
def front_desk(make_actor):
    return make_actor("desk-2", "front_desk")


@pytest.fixture
def platform_admin(make_actor):
    return make_actor("platform-1", "platform_admin")


# =============================================================================
# Scenario data
# =============================================================================


@pytest.fixture
def refund_policy(policy_service, platform_admin):
    """The two-approver large-refund policy, stored."""
    return policy_service.create_policy(platform_admin, large_refund_draft())
