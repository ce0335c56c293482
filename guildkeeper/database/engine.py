"""
guildkeeper.database.engine — Database Connection & Async Helper
=================================================================

discord.py runs on an ``asyncio`` event loop while SQLAlchemy + psycopg2 is
synchronous.  Every database call a cog makes goes through :func:`run_db`,
which ships the synchronous function to the default thread pool via
``asyncio.to_thread()`` so the gateway heartbeat never stalls on a query.

Usage::

    from guildkeeper.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside an async cog method:
    result = await run_db(award, engine, guild_id, user_id, ...)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from guildkeeper.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Pool sizing: five persistent connections, ten overflow, 10 s checkout
    timeout, hourly recycle.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`guildkeeper.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is kept as a safety net for dev/test
        environments where Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that commits on success and rolls back
    on exception.
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dialect_name(session: Session) -> str:
    """Name of the dialect *session* is bound to (``"postgresql"``, ``"sqlite"``)."""
    return session.get_bind().dialect.name


def dialect_insert(session: Session, table):
    """Return an ``INSERT`` construct supporting ``ON CONFLICT`` for *session*'s backend.

    PostgreSQL in production, SQLite under the test suite.  Both dialects
    expose the same ``on_conflict_do_update`` / ``on_conflict_do_nothing``
    API.
    """
    if dialect_name(session) == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every DB call in a cog goes through this wrapper::

        result = await run_db(my_sync_db_function, engine, user_id)

    Exceptions raised by *func* propagate to the awaiting coroutine.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
