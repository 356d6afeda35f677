"""
Module: inventory_kernel.db.engine
Responsibility: SQLAlchemy engine construction, session factories and the
    transactional scope utility.  This is the single point of database
    connection configuration for the kernel.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, selectors/, domain/, or outer layers
    (except for create_tables/drop_tables which import models).

Invariants enforced:
    - No module-level engine.  Every engine and session factory is created
      by the caller and passed around explicitly (see db/registry.py), so
      two tenants never share ambient state.
    - PostgreSQL sessions run at READ COMMITTED with explicit row-level
      locking (FOR UPDATE on stock-lock rows) where the balance check needs
      stronger isolation.
    - SQLite is supported for tests and local tooling.  In-memory URLs use a
      StaticPool so every session sees the same database, and BEGIN is
      emitted explicitly so SAVEPOINT works.

Failure modes:
    - OperationalError if the database is unreachable (surfaced by the
      orchestrator as StorageFailureError).

Audit relevance:
    All database transactions flow through sessions created here.  The
    session_scope() context manager gives commit-or-rollback semantics, which
    is what keeps a ledger mutation and its audit row together.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from inventory_kernel.config import KernelSettings
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    """Let SQLAlchemy own BEGIN so nested transactions behave on pysqlite."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build a SQLAlchemy engine for one tenant database.

    Args:
        database_url: SQLAlchemy URL (postgresql://... or sqlite://...).
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool (PostgreSQL).
        max_overflow: Max connections beyond pool_size (PostgreSQL).
        pool_pre_ping: If True, test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.

    Returns:
        A new Engine.  The caller owns it and must dispose it.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **kwargs)
        _install_sqlite_transaction_hooks(engine)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    logger.info(
        "engine_initialized",
        extra={
            "dialect": engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )
    return engine


def init_engine_from_settings(settings: KernelSettings) -> Engine:
    """Build an engine from a KernelSettings snapshot."""
    return init_engine_from_url(
        settings.database_url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to ``engine``; objects survive commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed.  The exception
        is re-raised to the caller.

    Usage:
        with session_scope(factory) as session:
            session.add(entity)
    """
    session = session_factory()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """
    Create all kernel tables on ``engine``.

    Registers the ORM immutability listeners as a side effect, since a
    schema without them would accept forbidden updates.
    """
    from inventory_kernel.db.base import Base
    from inventory_kernel.db.immutability import register_immutability_listeners
    import inventory_kernel.models  # noqa: F401

    Base.metadata.create_all(engine)
    register_immutability_listeners()
    logger.info(
        "tables_created",
        extra={"tables": sorted(Base.metadata.tables)},
    )


def drop_tables(engine: Engine) -> None:
    """Drop all kernel tables. Use with caution - primarily for testing."""
    from inventory_kernel.db.base import Base
    import inventory_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)


def is_postgres(engine_or_session: Engine | Session) -> bool:
    """Check whether the bound dialect is PostgreSQL."""
    bind = (
        engine_or_session.get_bind()
        if isinstance(engine_or_session, Session)
        else engine_or_session
    )
    return bind.dialect.name == "postgresql"
