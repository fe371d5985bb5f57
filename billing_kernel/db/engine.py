"""
Module: billing_kernel.db.engine
Responsibility: The one place the billing database connection is set up:
    engine creation per dialect, the module-level session factory, and the
    commit-or-rollback transaction scope.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/ or domain/ (create_tables imports models
    lazily so that Base.metadata is populated).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; invoices are protected by
      SELECT ... FOR UPDATE and the invoice version counter.
    - SQLite connections enforce foreign keys and wait up to
      SQLITE_BUSY_TIMEOUT_SECONDS on a locked database.
    - session_scope() is all-or-nothing: commit on success, rollback on any
      exception.

Failure modes:
    - RuntimeError if the engine or session factory is used before
      init_engine_from_url() / init_engine_from_env().
"""

import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from billing_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

DATABASE_URL_ENV = "BILLING_DATABASE_URL"
SQLITE_BUSY_TIMEOUT_SECONDS = 30

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def database_url_from_env(default: str | None = None) -> str:
    """
    Read the database URL from ``BILLING_DATABASE_URL``.

    Raises:
        RuntimeError: If the variable is unset and no default is given.
    """
    url = os.environ.get(DATABASE_URL_ENV, default)
    if not url:
        raise RuntimeError(f"{DATABASE_URL_ENV} is not set")
    return url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _build_engine(database_url: str, echo: bool, pool_options: dict) -> Engine:
    if make_url(database_url).get_backend_name() == "sqlite":
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            },
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        isolation_level="READ COMMITTED",
        **pool_options,
    )


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
    Create the engine and session factory; a second call replaces the first.

    Pool options apply to PostgreSQL only.
    """
    global _engine, _SessionFactory

    _engine = _build_engine(
        database_url,
        echo,
        {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_pre_ping": pool_pre_ping,
            "pool_timeout": pool_timeout,
            "pool_recycle": pool_recycle,
        },
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "database": _engine.url.database,
            "echo": echo,
        },
    )
    return _engine


def init_engine_from_env(default: str | None = None, **options) -> Engine:
    """init_engine_from_url() with the URL from ``BILLING_DATABASE_URL``."""
    return init_engine_from_url(database_url_from_env(default), **options)


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """The shared factory; each thread opens its own session from it."""
    return _require_factory()


def get_session() -> Session:
    return _require_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One transaction: commit on normal exit, rollback and re-raise otherwise.

    Usage:
        with session_scope() as session:
            InvoiceService(session).create_invoice(...)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.info(
            "transaction_rolled_back",
            extra={
                "error_type": type(exc).__name__,
                "error_code": getattr(exc, "code", None),
            },
        )
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the billing tables on the current engine."""
    from billing_kernel.db.base import Base
    import billing_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop the billing tables. For tests."""
    from billing_kernel.db.base import Base
    import billing_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"
