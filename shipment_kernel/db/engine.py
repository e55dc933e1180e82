"""
Module: shipment_kernel.db.engine
Responsibility: Owns the process-wide SQLAlchemy engine and session factory,
    schema creation, and the commit-or-rollback ``session_scope`` helper.
Architecture position: Kernel > DB.  Imports models and the sequence service
    only inside ``create_tables`` / ``drop_tables`` so metadata is complete.

Backends:
    - PostgreSQL in production: pooled connections at READ COMMITTED.  The
      request version column and the vehicle compare-and-swap carry the
      concurrency guarantees; no SERIALIZABLE isolation is needed.
    - SQLite for tests and local runs: one file, connections shareable
      across threads, writers wait on the file lock for ``sqlite_busy_timeout``
      seconds instead of failing at once.

Failure modes:
    - RuntimeError when a session is requested before ``init_engine_from_url``.
    - OperationalError when the database cannot be reached; the facade turns
      it into StoreUnavailableError.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from shipment_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _engine_options(
    dialect: str,
    pool_size: int,
    max_overflow: int,
    pool_timeout: int,
    pool_recycle: int,
    sqlite_busy_timeout: float,
) -> dict:
    if dialect == "sqlite":
        return {
            "connect_args": {
                "check_same_thread": False,
                "timeout": sqlite_busy_timeout,
            },
        }
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
        "pool_recycle": pool_recycle,
        "isolation_level": "READ COMMITTED",
    }


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create the engine for ``database_url`` and bind a new session factory.

    Calling it again replaces the previous engine (the old one is not
    disposed; use ``reset_engine`` for that).  Pool settings apply to
    server backends only.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    dialect = url.get_backend_name()
    _engine = create_engine(
        url,
        echo=echo,
        pool_pre_ping=pool_pre_ping,
        **_engine_options(
            dialect, pool_size, max_overflow, pool_timeout, pool_recycle, sqlite_busy_timeout
        ),
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "database": url.database,
            "pool_size": None if dialect == "sqlite" else pool_size,
            "echo": echo,
        },
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory handed to BrokerageEngine; each operation opens its own session."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    Commit on clean exit, roll back and re-raise otherwise; always close.

        with session_scope() as session:
            SequenceService(session).ensure_sequences()
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every table and seed the audit sequence counter at zero."""
    import shipment_kernel.models  # noqa: F401  (registers all tables)
    from shipment_kernel.db.base import Base
    from shipment_kernel.services.sequence_service import SequenceService

    Base.metadata.create_all(get_engine())
    with session_scope() as session:
        SequenceService(session).ensure_sequences()

    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every table.  FOR TESTING ONLY."""
    import shipment_kernel.models  # noqa: F401
    from shipment_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())
    logger.info("tables_dropped")


def reset_engine() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
