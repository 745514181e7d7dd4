"""
Pytest fixtures for the inventory ledger test suite.

Provides:
- A file-backed SQLite LedgerDatabase per test (WAL, BEGIN IMMEDIATE)
- A deterministic clock and a retry executor that never sleeps
- Wired services (ledger, link store, registry, reconciliation, orchestrator)
- Seed helpers for products, investors and directory parties
- Captured structured logs as parsed JSON dicts
"""

import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest

from inventory_config import get_active_config
from inventory_kernel.db.engine import LedgerDatabase
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.domain.linking import LinkOwnerType
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from inventory_kernel.services.catalog_service import CatalogService
from inventory_kernel.services.entity_link_service import EntityLinkService
from inventory_kernel.services.instrument_registry import InstrumentRegistry
from inventory_kernel.services.movement_ledger import MovementLedger
from inventory_kernel.services.party_service import PartyService
from inventory_kernel.services.retry_executor import RetryExecutor, RetryPolicy
from inventory_services.cash_flow import CollectingCashFlowSink
from inventory_services.integration_orchestrator import IntegrationOrchestrator


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
    Capture inventory_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.process_sale(sale)
            logs = captured_logs()
            assert any(r["message"] == "operation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("inventory_kernel")
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
# Database fixtures
# =============================================================================


@pytest.fixture
def db(tmp_path):
    """A fresh file-backed SQLite ledger database with all tables."""
    database = LedgerDatabase(f"sqlite:///{tmp_path / 'inventory.db'}")
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def sleeps():
    """Delays the test retry executor was asked to sleep."""
    return []


@pytest.fixture
def fast_policy():
    """Three attempts, no jitter, no per-attempt thread."""
    return RetryPolicy(
        max_attempts=3,
        base_delay=0.1,
        max_delay=2.0,
        backoff_factor=2.0,
        jitter=False,
        timeout_per_attempt=None,
    )


@pytest.fixture
def executor(fast_policy, sleeps):
    return RetryExecutor(fast_policy, sleep=sleeps.append)


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def ledger(db, clock):
    return MovementLedger(db, clock)


@pytest.fixture
def links(db, clock):
    return EntityLinkService(db, clock)


@pytest.fixture
def instruments(db, clock):
    return InstrumentRegistry(db, clock)


@pytest.fixture
def cash_flow():
    return CollectingCashFlowSink()


@pytest.fixture
def config():
    """Bundled configuration with test retry timing (no jitter, no attempt thread)."""
    base = get_active_config()
    return replace(
        base,
        retry=replace(base.retry, base_delay=0.1, max_delay=2.0, jitter=False, timeout_per_attempt=None),
    )


@pytest.fixture
def orchestrator(db, config, clock, cash_flow, sleeps):
    """Orchestrator wired from the test configuration, without real sleeps."""
    return IntegrationOrchestrator.from_config(
        db, config, clock=clock, cash_flow=cash_flow, sleep=sleeps.append
    )


# =============================================================================
# Seed helpers
# =============================================================================


@pytest.fixture
def add_product(db, clock):
    """Register a product: ``add_product("P1", min_stock=2)``."""

    def _add(product_id: str, name: str | None = None, *, min_stock: int = 0):
        with db.session_scope() as session:
            return CatalogService(session, clock).register_product(
                product_id, name or product_id, min_stock=min_stock
            )

    return _add


@pytest.fixture
def add_investor(db, clock):
    """Register an investor with capital: ``add_investor("INV-1", "10000")``."""

    def _add(investor_id: str, invested: str = "0", *, name: str | None = None):
        with db.session_scope() as session:
            return CatalogService(session, clock).register_investor(
                investor_id, name or investor_id, Decimal(invested)
            )

    return _add


@pytest.fixture
def add_party(db, clock):
    """Create a directory party, optionally with one outstanding debt."""

    def _add(
        code: str,
        name: str,
        *,
        party_type: LinkOwnerType = LinkOwnerType.CUSTOMER,
        phone: str | None = None,
        debt: str | None = None,
        last_transaction_at: datetime | None = None,
    ):
        with db.session_scope() as session:
            service = PartyService(session, clock)
            info = service.create_party(
                code, party_type, name, phone=phone, last_transaction_at=last_transaction_at
            )
            if debt is not None:
                service.record_debt(party_type, code, Decimal(debt), document_ref=f"INV-{code}")
            return info

    return _add
