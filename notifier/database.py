"""
Database session management for the MotorLog notifier.

Provides the database engine and session factory shared by blueprints,
the background scheduler and the CLI without circular dependencies.
"""

import logging
import time

from config import Config
from flask import g
from models import Base, get_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker
from utils.error_codes import ErrorCode, StructuredError

logger = logging.getLogger(__name__)

# Create engine and session factory
engine = get_engine(Config.DATABASE_URL)
SessionLocal = scoped_session(sessionmaker(bind=engine))

QUERY_TIMER_KEY = "notifier_query_started"


@event.listens_for(Engine, "before_cursor_execute")
def _start_query_timer(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault(QUERY_TIMER_KEY, []).append(time.perf_counter())


@event.listens_for(Engine, "after_cursor_execute")
def _log_slow_query(conn, cursor, statement, parameters, context, executemany):
    """Warn when a store read or write holds up a reminder run."""
    started = conn.info.get(QUERY_TIMER_KEY)
    if not started:
        return
    duration_ms = (time.perf_counter() - started.pop()) * 1000
    if duration_ms <= Config.SLOW_QUERY_THRESHOLD_MS:
        return

    verb = statement.lstrip().split(None, 1)[0].upper() if statement.strip() else "?"
    error = StructuredError(
        ErrorCode.E202_DB_SLOW_QUERY,
        f"Slow {verb} took {duration_ms:.0f}ms (threshold {Config.SLOW_QUERY_THRESHOLD_MS}ms)",
        statement=statement[:120],
    )
    logger.warning(str(error), extra={"duration_ms": round(duration_ms, 2)})


def init_db():
    """Create any missing tables."""
    Base.metadata.create_all(engine)


def get_db():
    """
    Get database session for the current request.

    Uses Flask's application context to store the session,
    ensuring proper cleanup at the end of each request.
    """
    if "db" not in g:
        g.db = SessionLocal()
    return g.db


def close_db(exception=None):
    """Close database session at end of request."""
    db = g.pop("db", None)
    if db is not None:
        SessionLocal.remove()


def init_app(app):
    """
    Initialize database with Flask app.

    Registers the teardown function to close sessions.
    """
    app.teardown_appcontext(close_db)
