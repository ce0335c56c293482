"""
guildkeeper.engine.cooldown — Atomic XP Cooldown Gate
======================================================

One row per (guild, user) in ``xp_cooldowns`` holds the instant the member
may next earn XP.  Claiming the window is a single conditional upsert::

    INSERT INTO xp_cooldowns (guild_id, user_id, expires_at)
    VALUES (:g, :u, :now + ttl)
    ON CONFLICT (guild_id, user_id) DO UPDATE
        SET expires_at = excluded.expires_at
        WHERE xp_cooldowns.expires_at <= :now
    RETURNING guild_id

A returned row means this caller won the window.  Two handlers racing for
the same member both run the statement; the row lock taken by the first
makes the second see the fresh ``expires_at`` and return nothing.  There
is never a read-then-write pair.

Database errors propagate (fail closed): the transaction rolls back, so a
failed claim leaves no marker behind.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete

from guildkeeper.database.engine import dialect_insert, get_session
from guildkeeper.database.models import XpCooldown

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class CooldownGate:
    """Per-member "set if absent (or expired) with TTL" backed by the database."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def try_consume(
        self,
        guild_id: int,
        user_id: int,
        cooldown_seconds: int,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Claim the member's cooldown window.

        Returns True when the caller may award XP (and the window is now
        held for *cooldown_seconds*), False while a previous window is still
        running.  A cooldown of 0 always succeeds without writing anything.
        """
        if cooldown_seconds <= 0:
            return True
        now = now or datetime.now(UTC)
        expires_at = now + timedelta(seconds=cooldown_seconds)

        with get_session(self.engine) as session:
            stmt = dialect_insert(session, XpCooldown).values(
                guild_id=guild_id, user_id=user_id, expires_at=expires_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[XpCooldown.guild_id, XpCooldown.user_id],
                set_={"expires_at": stmt.excluded.expires_at},
                where=XpCooldown.expires_at <= now,
            ).returning(XpCooldown.guild_id)
            acquired = session.execute(stmt).first() is not None

        if not acquired:
            logger.debug("XP cooldown active for user %s in guild %s", user_id, guild_id)
        return acquired

    def release(self, guild_id: int, user_id: int) -> None:
        """Drop the member's marker, e.g. when the award after a claim failed."""
        with get_session(self.engine) as session:
            session.execute(
                delete(XpCooldown).where(
                    XpCooldown.guild_id == guild_id,
                    XpCooldown.user_id == user_id,
                )
            )

    def prune_expired(self, *, now: datetime | None = None) -> int:
        """Delete markers whose window has passed.  Returns rows removed."""
        now = now or datetime.now(UTC)
        with get_session(self.engine) as session:
            result = session.execute(
                delete(XpCooldown).where(XpCooldown.expires_at <= now)
            )
            removed = result.rowcount or 0
        if removed:
            logger.info("Pruned %d expired XP cooldown marker(s)", removed)
        return removed
