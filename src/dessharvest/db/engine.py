"""Database engine factory and session management."""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, event
from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dessharvest.config.settings import Settings
from dessharvest.db.base import Base

# The scheduler writes while CLI commands read the same file
SQLITE_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA busy_timeout = 5000",
)


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        for pragma in SQLITE_PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()


def create_engine(settings: Settings) -> Engine:
    """Create a SQLAlchemy engine for ``settings.database_url``.

    In-memory SQLite databases are kept on one shared connection. File
    databases get their parent directory created and run in WAL mode.
    Statement echo follows ``log_level == "DEBUG"``.
    """
    url = make_url(settings.database_url)

    if url.get_backend_name() != "sqlite":
        return sa_create_engine(
            url,
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )

    in_memory = url.database in (None, "", ":memory:")
    if not in_memory:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = sa_create_engine(
        url,
        echo=settings.log_level == "DEBUG",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if in_memory else None,
    )
    if not in_memory:
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def create_tables(engine: Engine) -> None:
    """Create every table that does not exist yet."""
    # Registers the mapped classes on Base.metadata
    from dessharvest.db import models as _  # noqa: F401

    Base.metadata.create_all(bind=engine)


def drop_tables(engine: Engine) -> None:
    """Drop every table known to the models."""
    Base.metadata.drop_all(bind=engine)


@contextmanager
def get_session(engine: Engine) -> Generator[Session, None, None]:
    """Open a session that commits when the block succeeds.

    Any exception rolls the transaction back and is re-raised. Loaded
    objects stay usable after the commit.

    Args:
        engine: SQLAlchemy engine.

    Yields:
        Database session.
    """
    session = sessionmaker(bind=engine, expire_on_commit=False)()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
