"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# guildkeeper.api.deps validates JWT_SECRET at import time, so a strong one
# must be in the environment before anything imports it.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import BigInteger, Engine, create_engine  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from guildkeeper.database.models import Base  # noqa: E402


# SQLite only autoincrements INTEGER PRIMARY KEY columns.
@compiles(BigInteger, "sqlite")
def _compile_bigint_as_integer(type_, compiler, **kw):
    return "INTEGER"


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every GuildKeeper table.

    StaticPool keeps one shared connection so worker threads
    (``asyncio.to_thread`` in the rate limiter) see the same database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    with Session(db_engine) as session:
        yield session
        session.rollback()


def make_user_token(sub: str = "99999", guilds: list[str] | None = None) -> str:
    """Dashboard JWT for *sub* managing *guilds*."""
    import jwt

    from guildkeeper.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": "FixtureUser", "guilds": guilds or []},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def token_factory():
    return make_user_token
