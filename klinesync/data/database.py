"""Database engine, session factory, and schema initialisation.

Startup sequence
────────────────
1. Ensure the DB directory exists (file-backed SQLite only).
2. Apply PRAGMA optimisations (WAL, cache, temp-store) per connection.
3. Import models so Base.metadata knows about all tables.
4. Run create_all: idempotent, skips tables that already exist.  An
   "already exists" race from a concurrent creator is swallowed; any other
   failure is raised as StoreError.

There is no module-level engine: callers build one from Settings and hand
the session factory to the store adapter.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from klinesync.exceptions import StoreError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy 2.x declarative base."""


# ── Engine ────────────────────────────────────────────────────────────────────

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA cache_size=-65536",    # 64 MB
    "PRAGMA temp_store=MEMORY",
)


def _apply_sqlite_pragmas(dbapi_conn, _connection_record) -> None:
    """Per-connection SQLite PRAGMAs.

    WAL lets the gap report read while ingestion is writing; NORMAL sync is
    enough for a cache that can always be rebuilt from upstream.
    """
    cursor = dbapi_conn.cursor()
    for pragma in _SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def create_db_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    if url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        pool_pre_ping=True,
    )
    event.listen(engine, "connect", _apply_sqlite_pragmas)
    return engine


# ── Session factory ───────────────────────────────────────────────────────────

def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Yield a managed session with commit on success, rollback on error.

    SQLAlchemy errors leave the scope as StoreError so callers only deal with
    the klinesync taxonomy.
    """
    session = factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise StoreError(str(exc)) from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ── Schema ────────────────────────────────────────────────────────────────────

def initialize_schema(engine: Engine) -> None:
    """Create all tables if absent and verify connectivity.

    Idempotent; safe to call on every startup and from every store instance.
    """
    # Import models to register them with Base.metadata before create_all.
    import klinesync.data.models  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
    except OperationalError as exc:
        if "already exists" not in str(exc).lower():
            raise StoreError(f"Schema creation failed: {exc}") from exc
        logger.debug("Schema already exists (created concurrently): %s", exc)
    except SQLAlchemyError as exc:
        raise StoreError(f"Schema creation failed: {exc}") from exc

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise StoreError(f"Database health check failed: {exc}") from exc

    logger.info("Database schema ready at %s", engine.url.render_as_string(hide_password=True))
