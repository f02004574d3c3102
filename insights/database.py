"""
Database session management for Charging Insights.

Owns the engine and the scoped session factory used by the API, plus a
transactional scope for batch jobs (ingest and rebuild) that run outside
a request.
"""

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from config import Config
from flask import g
from models import get_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker

logger = logging.getLogger(__name__)

engine = get_engine(Config.DATABASE_URL)
SessionLocal = scoped_session(sessionmaker(bind=engine))


@event.listens_for(Engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_start_time", []).append(time.time())


@event.listens_for(Engine, "after_cursor_execute")
def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    """Warn on statements slower than Config.SLOW_QUERY_THRESHOLD_MS (full-table aggregations mostly)."""
    duration_ms = (time.time() - conn.info["query_start_time"].pop(-1)) * 1000

    if duration_ms > Config.SLOW_QUERY_THRESHOLD_MS:
        truncated_query = statement[:200] + "..." if len(statement) > 200 else statement
        logger.warning(
            f"Slow query detected: {duration_ms:.2f}ms - {truncated_query}", extra={"duration_ms": duration_ms}
        )


@contextmanager
def session_scope(bind: Optional[Engine] = None) -> Iterator[Session]:
    """
    Transactional scope for a batch job.

    Commits when the block finishes, rolls back and re-raises on any error,
    and always releases the session.

    Args:
        bind: Engine to open the session on; defaults to the application engine

    Example:
        >>> with session_scope(get_engine(url)) as db:
        ...     rebuild_all(db)
    """
    session = sessionmaker(bind=bind)() if bind is not None else SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        if bind is not None:
            session.close()
        else:
            SessionLocal.remove()


def get_db():
    """
    Session for the current request.

    Stored on flask.g so every service call in one request reads the same
    snapshot of events, sessions and profiles.
    """
    if "db" not in g:
        g.db = SessionLocal()
    return g.db


def close_db(exception=None):
    """Release the request session (teardown_appcontext)."""
    db = g.pop("db", None)
    if db is not None:
        SessionLocal.remove()


def init_app(app):
    app.teardown_appcontext(close_db)
