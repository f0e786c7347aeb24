"""
Pytest fixtures for the settlement engine test suite.

Every test that touches the database gets its own file-backed SQLite
database under ``tmp_path``, so tests never share rows and threads in
concurrency tests see each other's commits.
"""

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from settlement_kernel.config import SettlementConfig
from settlement_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from settlement_kernel.domain.clock import DeterministicClock
from settlement_kernel.domain.obligation import ConsumedLine, Obligation, ObligationKind
from settlement_kernel.domain.settlement import SettlementEvent
from settlement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from settlement_kernel.services.obligation_service import ObligationService
from settlement_services.settlement_service import SettlementService

# -- logging --------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _json_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _fresh_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """Call the yielded function to get every JSON line logged so far."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("settlement_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    yield lambda: [json.loads(line) for line in stream.getvalue().splitlines() if line]

    root.removeHandler(handler)
    root.setLevel(previous_level)


# -- database -------------------------------------------------------------


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite database file with every table created."""
    init_engine_from_url(f"sqlite:///{tmp_path / 'settlement.db'}", timeout_seconds=10.0)
    create_tables()
    yield get_engine()
    reset_engine()


@pytest.fixture
def session_factory(engine) -> Callable[[], Session]:
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A session whose uncommitted work is rolled back after the test."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# -- obligations and events -----------------------------------------------


@pytest.fixture
def test_actor_id() -> UUID:
    return uuid4()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2024, 3, 14, 12, 0, tzinfo=UTC))


@pytest.fixture
def settlement_config() -> SettlementConfig:
    return SettlementConfig.with_defaults()


@pytest.fixture
def create_obligation(session_factory, deterministic_clock, settlement_config, test_actor_id):
    """
    Factory fixture: commit a new obligation and return its snapshot.

    Usage::

        obligation = create_obligation("1000")
        bar = create_obligation("700", kind=ObligationKind.BAR_ORDER,
                                lines=[ConsumedLine("tusker", Decimal("2"))])
    """

    def _create(
        total_due: Decimal | str = "1000",
        kind: ObligationKind = ObligationKind.RESTAURANT_ORDER,
        lines: tuple[ConsumedLine, ...] = (),
        reference: str | None = None,
        opened_at: datetime | None = None,
    ) -> Obligation:
        s = session_factory()
        try:
            result = ObligationService(s, deterministic_clock, settlement_config).create(
                kind, total_due, lines, reference, test_actor_id, opened_at
            )
            s.commit()
            return result.obligation
        finally:
            s.close()

    return _create


@pytest.fixture
def make_event(deterministic_clock, settlement_config, test_actor_id):
    """
    Factory fixture: build a SettlementEvent from ``{"cash": "500"}`` input.
    """

    def _make(
        obligation_id: UUID,
        tenders,
        debtor_name: str | None = None,
        event_id: UUID | None = None,
    ) -> SettlementEvent:
        return SettlementEvent.of(
            obligation_id,
            tenders,
            actor_id=test_actor_id,
            occurred_at=deterministic_clock.now(),
            debtor_name=debtor_name,
            event_id=event_id,
            aliases=settlement_config.tender_aliases,
        )

    return _make


@pytest.fixture
def settlement_service(session_factory, deterministic_clock, settlement_config):
    return SettlementService(session_factory, deterministic_clock, settlement_config)
