"""Persistence for the artifact cache index and the build history.

Both tables live in one SQLite file under the data directory, outside the
cache and work trees, so that cleaning either tree never loses history.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from emcomm_isogen.config import get_settings

SQLITE_PREFIX = "sqlite:///"


class Base(DeclarativeBase):
    """Declarative base shared by CachedArtifact and BuildRecord."""


def sqlite_path(db_url: str) -> Path | None:
    """Return the database file behind a SQLite URL, or None.

    In-memory databases and non-SQLite URLs have no file.
    """
    if not db_url.startswith(SQLITE_PREFIX):
        return None
    location = db_url[len(SQLITE_PREFIX) :]
    if not location or location == ":memory:":
        return None
    return Path(location)


def _enable_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_url: str | None = None) -> Engine:
    """Create an engine for the history database.

    Args:
        db_url: Database URL. Defaults to ``Settings.db_url``.

    Returns:
        SQLAlchemy Engine. For a SQLite file the parent directory is created.
    """
    db_url = db_url or get_settings().db_url

    connect_args: dict[str, Any] = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        db_file = sqlite_path(db_url)
        if db_file is not None:
            db_file.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_foreign_keys)
    return engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Return a session factory bound to ``engine`` (or a new default engine)."""
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


def create_all_tables(engine: Engine | None = None) -> None:
    """Create the cache index and build history tables if missing."""
    # Model modules register their tables on import
    from emcomm_isogen.builds import models as builds_models  # noqa: F401
    from emcomm_isogen.cache import models as cache_models  # noqa: F401

    Base.metadata.create_all(bind=engine if engine is not None else get_engine())


def open_database(db_url: str | None = None) -> sessionmaker[Session]:
    """Create the tables and return a session factory for ``db_url``."""
    engine = get_engine(db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


@contextmanager
def get_session(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Yield a session that commits on success and rolls back on error.

    A build that fails still commits its record before the error reaches
    here, so a rollback only discards work of the failing call itself.
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "open_database",
    "sqlite_path",
]
