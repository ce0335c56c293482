"""
guildkeeper.api.deps — FastAPI dependency injection
====================================================

Dashboard users authenticate with a Bearer JWT (HS256) issued by the
external login flow.  The token carries:

- ``sub``    — the Discord user id
- ``guilds`` — ids of the guilds the user may manage
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from guildkeeper.database.engine import create_db_engine

_WEAK_SECRETS = frozenset({
    "guildkeeper-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate the JWT and return its payload.  Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("sub"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    return payload


def can_manage_guild(user: dict, guild_id: int) -> bool:
    return str(guild_id) in {str(g) for g in user.get("guilds") or []}


def require_guild_access(
    guild_id: int,
    user: dict = Depends(get_current_user),
) -> dict:
    """Resolve the ``{guild_id}`` path parameter against the token.  403 if not managed."""
    if not can_manage_guild(user, guild_id):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "No access to this guild")
    return user
