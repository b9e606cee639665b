"""
Module: inventory_kernel.db.engine
Responsibility: One process-wide SQLAlchemy engine and session factory for
    the inventory ledger, plus the transactional scope callers commit in.
Architecture position: Kernel > DB.  Imports only db/base.py and the models
    package (lazily, to register tables).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED.  The ledger relies on atomic
      add-delta UPDATEs for snapshots and on ``FOR UPDATE`` product locks for
      cost, not on serializable isolation.
    - SQLite keeps one shared connection and lets SQLAlchemy issue BEGIN, so
      the SAVEPOINT around each ledger step behaves as on PostgreSQL.
    - Services flush and never commit; ``session_scope`` is where a unit of
      work ends.

Failure modes:
    - RuntimeError when a session or the engine is requested before
      ``init_engine_from_url``.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from inventory_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

_NOT_INITIALISED = "Inventory database not initialised; call init_engine_from_url() first."


def _sqlite_engine(url: str, echo: bool) -> Engine:
    engine = create_engine(
        url,
        echo=echo,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> Engine:
    """
    Create the engine and session factory for ``database_url``.

    A later call replaces the engine of an earlier one.  ``pool_*`` apply
    only to server databases.
    """
    global _engine, _session_factory

    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        _engine = _sqlite_engine(database_url, echo)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
            pool_recycle=1800,
            isolation_level="READ COMMITTED",
        )
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"backend": backend, "echo": echo})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALISED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for independent sessions; concurrent workers take one each."""
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALISED)
    return _session_factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Unit of work around ledger calls.

    Commits when the block exits normally; on an exception the whole unit,
    including any ledger steps that succeeded, is rolled back and the
    exception re-raised.

        with session_scope() as session:
            MovementLedger(session).receive(command).raise_for_failure()
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("unit_of_work_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from inventory_kernel.db.base import Base
    import inventory_kernel.models  # noqa: F401  registers every table

    return Base.metadata


def create_tables() -> None:
    metadata = _metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(metadata.tables)})


def drop_tables() -> None:
    """Drop every inventory table.  Tests and local tooling only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
