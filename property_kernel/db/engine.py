"""
Module: property_kernel.db.engine
Responsibility: Engine construction, the process-wide session factory, and
    the commit-or-rollback unit of work used by every boundary operation.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/immutability.py.  MUST NOT import from services/, selectors/, domain/,
    or outer layers (create_tables imports models to populate metadata).

Invariants enforced:
    - PostgreSQL is the production backend: READ COMMITTED isolation with
      SELECT ... FOR UPDATE on the request row for every approval mutation.
    - SQLite serves tests and local tooling.  FOR UPDATE is not emitted
      there; the single-writer database lock serialises mutations, and
      foreign keys are switched on per connection.
    - session_scope() commits on success and rolls back on any exception,
      so a request and its governed transaction change together or not at
      all.

Failure modes:
    - RuntimeError from get_engine/get_session_factory before
      init_engine_from_url().
    - OperationalError ("database is locked") on SQLite when a writer holds
      the lock past the busy timeout.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from property_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

SQLITE_BUSY_TIMEOUT_SECONDS = 15

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _sqlite_foreign_keys_on(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
) -> Engine:
    """
    Engine for ``database_url`` without touching the process-wide engine.

    Pool arguments apply to PostgreSQL only.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            },
        )
        event.listen(engine, "connect", _sqlite_foreign_keys_on)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
) -> Engine:
    """
    Initialize the process-wide engine and session factory.

    Also registers the ORM immutability listeners and configures logging,
    so scripts need nothing else before opening a session_scope().

    Args:
        database_url: SQLAlchemy URL (postgresql://... or sqlite:///...).
        echo: Log every SQL statement.
        pool_size: Pooled connections kept open (PostgreSQL).
        max_overflow: Connections allowed beyond pool_size (PostgreSQL).
    """
    global _engine, _SessionFactory
    from property_kernel.db.immutability import register_immutability_listeners

    if _engine is not None:
        _engine.dispose()
    _engine = build_engine(
        database_url, echo=echo, pool_size=pool_size, max_overflow=max_overflow
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)
    register_immutability_listeners()

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "pool_size": pool_size, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    The factory bound to the process-wide engine.

    Raises:
        RuntimeError: If init_engine_from_url() has not run.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One unit of work: commit on normal exit, roll back and re-raise otherwise.

    Usage:
        with session_scope() as session:
            services = build_services(session, clock, settings)
            ...
    """
    session = (session_factory or get_session_factory())()
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


def create_tables(engine: Engine | None = None) -> None:
    """Create every kernel table that does not exist yet."""
    from property_kernel.db.base import Base
    import property_kernel.models  # noqa: F401

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every kernel table. Development databases only."""
    from property_kernel.db.base import Base
    import property_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def dispose_engine() -> None:
    """Close pooled connections and forget the process-wide engine."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
