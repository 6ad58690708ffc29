# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# A single synchronous SQLAlchemy engine backs both halves of the system:
# the ingestion pipeline calls the repository directly, and the async query
# graph calls it through asyncio.to_thread().
#
# SESSION LIFECYCLE (session_scope):
#   create → yield → commit (or rollback on error) → close
#
# The engine is built from an explicit Settings object; nothing here reads
# configuration at import time.
# =============================================================================

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event, make_url, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from kbqa.config import Settings
from kbqa.db.models import Base


def build_engine(settings: Settings) -> Engine:
    """
    Create the engine for settings.database_url.

    In-memory SQLite gets a StaticPool so every session (and every worker
    thread) shares the one connection that holds the data.
    """
    url = make_url(settings.database_url)
    if url.get_backend_name() == "sqlite":
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=settings.debug, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(
        url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    """
    Session factory with expire_on_commit=False, so ORM objects returned
    from a finished session_scope() can still be read.
    """
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    """Create the pgvector extension (PostgreSQL only) and all tables."""
    if engine.dialect.name == "postgresql":
        with engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    Provide a transactional session.

    Usage:
        with session_scope(factory) as session:
            doc = session.get(Document, document_id)
            # Auto-commits on exit, auto-rollbacks on exception
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
