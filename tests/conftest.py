"""
Pytest fixtures for the inventory kernel test suite.

Provides:
- A session-scoped engine and schema (in-memory SQLite by default)
- A per-test ``session`` whose changes are rolled back at teardown
- A committing ``session_factory`` for orchestrator tests, cleaned with DELETE
- Product seeding helpers and wired service fixtures

Environment Variables:
- DATABASE_URL: SQLAlchemy URL.  Defaults to in-memory SQLite.  Point it at
  PostgreSQL to run the suite (including ``postgres``-marked concurrency
  tests) against a real server.
"""

import json
import logging
import os
from collections.abc import Callable
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import delete
from sqlalchemy.orm import Session

from inventory_kernel.db.base import Base
from inventory_kernel.db.engine import (
    create_session_factory,
    create_tables,
    drop_tables,
    init_engine_from_url,
    is_postgres,
    session_scope,
)
from inventory_kernel.db.immutability import unregister_immutability_listeners
from inventory_kernel.domain.catalog import ProductCategory, SourceType
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.domain.dtos import NewLedgerEntry
from inventory_kernel.domain.movements import EntryType
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from inventory_kernel.models.product import Product
from inventory_kernel.selectors.ledger_selector import LedgerSelector
from inventory_kernel.services.alert_outbox import AlertOutbox
from inventory_kernel.services.alert_service import AlertEvaluator
from inventory_kernel.services.audit_trail_service import AuditTrailService
from inventory_kernel.services.formula_service import FormulaGraphService
from inventory_kernel.services.ledger_service import LedgerService
from inventory_kernel.services.lock_service import LockService
from inventory_kernel.services.manufacturing_service import ManufacturingService
from inventory_kernel.services.product_catalog import SqlProductCatalog

DEFAULT_DATABASE_URL = "sqlite:///:memory:"

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
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
    Capture inventory_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger_service):
            ledger_service.create(...)
            logs = captured_logs()
            assert any(r["message"] == "ledger_entry_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("inventory_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), pool_size=30, max_overflow=20, pool_timeout=10)
    yield eng
    eng.dispose()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session (registers immutability listeners)."""
    drop_tables(db_engine)
    create_tables(db_engine)
    yield
    unregister_immutability_listeners()
    drop_tables(db_engine)


def _delete_all_rows(engine) -> None:
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(delete(table))


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection; any
    ``session.commit()`` inside the test only releases a savepoint, and the
    outer transaction is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture(scope="function")
def session_factory(db_tables, db_engine):
    """Session factory with real commits, for orchestrator tests.

    Data isolation is achieved by deleting every row at teardown.
    """
    factory = create_session_factory(db_engine)
    yield factory
    _delete_all_rows(db_engine)


@pytest.fixture
def requires_postgres(db_engine):
    if not is_postgres(db_engine):
        pytest.skip("requires PostgreSQL (set DATABASE_URL)")


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def location_id() -> UUID:
    return uuid4()


# =============================================================================
# Product catalog fixtures
# =============================================================================


def seed_product(
    session: Session,
    name: str,
    category: ProductCategory = ProductCategory.RAW,
    min_stock_threshold: Decimal | None = None,
    unit: str = "pcs",
) -> Product:
    source = SourceType.TRADING if category is ProductCategory.RAW else SourceType.MANUFACTURING
    product = Product(
        name=name,
        category=category.value,
        source_type=source.value,
        unit=unit,
        min_stock_threshold=min_stock_threshold,
    )
    session.add(product)
    session.flush()
    return product


@pytest.fixture
def make_product(session) -> Callable[..., Product]:
    """Factory that seeds a product in the rolled-back test session."""

    def _make(name: str = "Widget", **kwargs) -> Product:
        return seed_product(session, name, **kwargs)

    return _make


@pytest.fixture
def make_committed_product(session_factory) -> Callable[..., UUID]:
    """Factory that commits a product through ``session_factory`` and returns its id."""

    def _make(name: str = "Widget", **kwargs) -> UUID:
        with session_scope(session_factory) as sess:
            product_id = seed_product(sess, name, **kwargs).id
        return product_id

    return _make


@pytest.fixture
def catalog(session) -> SqlProductCatalog:
    return SqlProductCatalog(session)


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def lock_service(session) -> LockService:
    return LockService(session)


@pytest.fixture
def ledger_selector(session, deterministic_clock) -> LedgerSelector:
    return LedgerSelector(session, deterministic_clock)


@pytest.fixture
def ledger_service(session, catalog, deterministic_clock, ledger_selector, lock_service):
    """Provide a LedgerService instance."""
    return LedgerService(session, catalog, deterministic_clock, ledger_selector, lock_service)


@pytest.fixture
def formula_service(session, catalog, deterministic_clock, lock_service):
    """Provide a FormulaGraphService instance."""
    return FormulaGraphService(session, catalog, deterministic_clock, lock_service)


@pytest.fixture
def audit_service(session, ledger_service, deterministic_clock):
    """Provide an AuditTrailService instance."""
    return AuditTrailService(session, ledger_service, deterministic_clock)


@pytest.fixture
def manufacturing_service(
    session, catalog, ledger_service, formula_service, audit_service, ledger_selector, lock_service
):
    """Provide a ManufacturingService instance."""
    return ManufacturingService(
        session,
        catalog,
        ledger_service,
        formula_service,
        audit_service,
        ledger_selector,
        lock_service,
    )


@pytest.fixture
def alert_evaluator(session, catalog, ledger_selector, deterministic_clock):
    return AlertEvaluator(session, catalog, ledger_selector, deterministic_clock)


@pytest.fixture
def alert_outbox(session, deterministic_clock):
    return AlertOutbox(session, deterministic_clock)


@pytest.fixture
def stock_in(ledger_service, audit_service, test_actor_id, deterministic_clock):
    """Record an audited manual_in movement and return the LedgerChange."""

    def _stock_in(product_id: UUID, location_id: UUID, quantity: str | Decimal):
        deterministic_clock.tick()
        change = ledger_service.create(
            NewLedgerEntry(
                product_id=product_id,
                location_id=location_id,
                entry_type=EntryType.MANUAL_IN,
                quantity=Decimal(quantity),
            ),
            test_actor_id,
        )
        audit_service.record_change(change, test_actor_id)
        return change

    return _stock_in
