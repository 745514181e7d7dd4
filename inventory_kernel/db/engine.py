"""
Module: inventory_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope.  A LedgerDatabase instance is the single point of
    database connection configuration for one ledger.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/immutability.py.  Imports models only inside create_tables().

Invariants enforced:
    - One engine per LedgerDatabase instance; nothing is held in module
      globals, so several ledgers (or test databases) can coexist.
    - session_scope() gives commit-or-rollback semantics: a failed unit of
      work leaves no partial rows.

Failure modes:
    - OperationalError on connection loss.  Callers wrap writes in the
      RetryExecutor, which treats OperationalError as transient.
    - Pool exhaustion if pool_size + max_overflow is exceeded (PostgreSQL).

Backends:
    PostgreSQL (psycopg2) for production.  SQLite for tests and local use;
    SQLite connections are opened with check_same_thread=False, a busy
    timeout and BEGIN IMMEDIATE transactions so the thread-based concurrency
    model works on one file.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.logging_config import get_logger

logger = get_logger("db.engine")


class LedgerDatabase:
    """
    Owns the engine and session factory for one inventory database.

    Contract:
        Constructed from a SQLAlchemy URL.  Every service receives the
        LedgerDatabase explicitly; no service reaches for a global engine.

    Guarantees:
        - session_scope() commits on normal exit, rolls back on exception,
          and always closes the session.
        - create_tables() is idempotent and installs immutability listeners.
    """

    def __init__(
        self,
        database_url: str,
        *,
        echo: bool = False,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_pre_ping: bool = True,
        sqlite_timeout: float = 30.0,
    ):
        self.database_url = database_url
        self.dialect = database_url.split(":", 1)[0].split("+", 1)[0]

        if self.dialect == "sqlite":
            self._engine = create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False, "timeout": sqlite_timeout},
            )
            event.listen(self._engine, "connect", _sqlite_on_connect)
            event.listen(self._engine, "begin", _sqlite_on_begin)
        else:
            self._engine = create_engine(
                database_url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=pool_pre_ping,
                isolation_level="READ COMMITTED",
            )

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        logger.info(
            "engine_initialized",
            extra={"dialect": self.dialect, "echo": echo},
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    def session(self) -> Session:
        """Return a new, unmanaged session. Caller closes it."""
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Usage:
            with db.session_scope() as session:
                session.add(entity)
                # Commits on successful exit, rolls back on exception
        """
        session = self._session_factory()
        logger.debug("transaction_started")
        try:
            yield session
            session.commit()
            logger.debug("transaction_committed")
        except Exception:
            session.rollback()
            logger.debug("transaction_rolled_back", exc_info=True)
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all tables and register the immutability listeners."""
        from inventory_kernel.db.base import Base
        from inventory_kernel.db.immutability import register_immutability_listeners
        from inventory_kernel.models import import_all_models

        import_all_models()
        Base.metadata.create_all(self._engine)
        register_immutability_listeners()
        logger.info("tables_created", extra={"dialect": self.dialect})

    def drop_tables(self) -> None:
        """Drop all tables. Use with caution - primarily for testing."""
        from inventory_kernel.db.base import Base
        from inventory_kernel.models import import_all_models

        import_all_models()
        Base.metadata.drop_all(self._engine)

    def dispose(self) -> None:
        self._engine.dispose()
        logger.info("engine_disposed", extra={"dialect": self.dialect})


def _sqlite_on_connect(dbapi_connection, connection_record):
    # Let SQLAlchemy emit BEGIN itself (see _sqlite_on_begin)
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_on_begin(conn):
    # Take the write lock up front; a deferred read that later upgrades to
    # a write fails immediately under WAL instead of waiting on the timeout.
    conn.exec_driver_sql("BEGIN IMMEDIATE")
