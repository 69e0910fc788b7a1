"""
Module: ownership_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  The single point of database
    connection configuration for the kernel.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/ or domain/ (create_tables imports the
    models package so Base.metadata is complete).

Invariants enforced:
    - PostgreSQL is the production backend.  Per-asset serialization uses
      SELECT ... FOR UPDATE on the asset row under READ COMMITTED.
    - SQLite is accepted for tests and single-process tools.  Every
      transaction is opened with BEGIN IMMEDIATE and a busy timeout, so
      writers queue instead of failing with "database is locked".

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
    - Connection pool exhaustion if pool_size + max_overflow is exceeded.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from ownership_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: int = 30,
) -> Engine:
    """
    Initialize the SQLAlchemy engine from a database URL.

    Postconditions: Module-level engine and session factory are initialized.
        All subsequent get_engine/get_session calls use this engine.  A second
        call overwrites the first.

    Args:
        database_url: postgresql://... for production, sqlite:///path for tests.
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool (PostgreSQL).
        max_overflow: Max connections beyond pool_size (PostgreSQL).
        pool_pre_ping: Test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
        sqlite_busy_timeout: Seconds a SQLite writer waits for the file lock.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        _engine = create_engine(
            url,
            echo=echo,
            connect_args={
                "check_same_thread": False,
                "timeout": sqlite_busy_timeout,
            },
        )
        _install_sqlite_transaction_hooks(_engine)
    else:
        _engine = create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )

    return _engine


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    """
    Take the SQLite write lock at BEGIN rather than at first write.

    pysqlite's own transaction handling defers BEGIN and lets two readers
    both upgrade to writers, which SQLite resolves by failing one of them
    immediately.  Emitting BEGIN IMMEDIATE ourselves makes concurrent
    sessions queue on the busy timeout instead.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """
    Get a new session instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory.

    Useful for multi-threaded callers where each thread needs its own session.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Commits on normal exit; rolls back and re-raises on exception.

    Usage:
        with session_scope() as session:
            AssetRegistryService(session, clock).create_asset(...)
    """
    session = get_session()
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


def create_tables() -> None:
    """
    Create all ledger tables.

    Raises:
        RuntimeError: If engine is not initialized.
    """
    from ownership_kernel.db.base import Base

    # Registers every model on Base.metadata
    import ownership_kernel.models  # noqa: F401

    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from ownership_kernel.db.base import Base

    import ownership_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Reset the engine and session factory.  Useful for test cleanup."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release all pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)


def is_postgres() -> bool:
    """Check if the current engine is PostgreSQL."""
    if _engine is None:
        return False
    return _engine.dialect.name == "postgresql"
