"""
Engine and session management.

One module-level engine per process, set by ``init_engine_from_url``.
PostgreSQL runs on a QueuePool at READ COMMITTED so the engine's
``SELECT ... FOR UPDATE`` serializes writers per entity; SQLite is for tests
and local runs, and an in-memory database is shared through StaticPool.

``create_tables`` is the one place that imports models, and it also installs
the ORM integrity listeners.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from lifecycle_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create an Engine for a PostgreSQL or SQLite URL without registering it.

    PostgreSQL engines get a QueuePool and READ COMMITTED isolation.
    In-memory SQLite engines use StaticPool so the single database is shared.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            return create_engine(
                database_url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
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


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """Build the process-wide engine and session factory (replacing any previous one)."""
    global _engine, _SessionFactory

    _engine = build_engine(database_url, echo=echo, **pool_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool": type(_engine.pool).__name__,
            "echo": echo,
        },
    )

    return _engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("No database configured; call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("No database configured; call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """Factory the scheduler and the outbound dispatcher open per-unit sessions from."""
    return _require_factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Commit on clean exit, roll back and re-raise otherwise; always close."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_scope_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """
    Create all lifecycle tables and register the ORM immutability listeners.

    Args:
        engine: Engine to create tables on. Defaults to the module engine.
    """
    from lifecycle_kernel.db.base import Base
    from lifecycle_kernel.db.immutability import register_immutability_listeners
    import lifecycle_kernel.models  # noqa: F401  (populate Base.metadata)

    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    register_immutability_listeners()
    logger.info(
        "tables_created",
        extra={"tables": sorted(Base.metadata.tables)},
    )


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every lifecycle table."""
    from lifecycle_kernel.db.base import Base
    import lifecycle_kernel.models  # noqa: F401

    engine = engine or get_engine()
    Base.metadata.drop_all(engine)


def reset_engine() -> None:
    """Dispose the module engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
