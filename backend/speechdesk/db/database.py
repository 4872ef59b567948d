"""Database engine & session utilities.

The DB helper is deliberately minimal: sync engine + classic session maker.
Both the API process and the Celery worker open short-lived sessions from
``SessionLocal``.
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from speechdesk.config import settings
from speechdesk.db.base import Base

# ---------------------------------------------------------------------------
# Engine & session factory
# ---------------------------------------------------------------------------

logger = logging.getLogger(__name__)
logger.info("Creating database engine for %s", settings.DATABASE_URL.split('@')[-1])

_engine_kwargs = {"echo": settings.DB_ECHO, "future": True}
if settings.DATABASE_URL.startswith("sqlite"):
    # FastAPI runs sync endpoints in a thread pool
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
    if ":memory:" in settings.DATABASE_URL:
        # One shared connection, otherwise every thread sees its own empty DB
        _engine_kwargs["poolclass"] = StaticPool

engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def create_tables() -> None:
    """Create all tables if they do not yet exist. Harmless when they do."""
    # Make sure every model is registered on Base.metadata
    from speechdesk import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ensured")
    except Exception as exc:  # broad except OK in one-off helper
        logger.exception("Could not create DB tables: %s", exc)

