"""
guildkeeper.services.moderation_service — Warnings & Moderation Audit Trail
============================================================================

Database side of ``/warn``.  Warnings are never deleted: clearing marks them
inactive so the audit history survives.  Every moderator action is also
appended to ``mod_actions``.

Threshold punishments (auto-kick / auto-ban) are decided here by
:func:`threshold_action` and carried out by
:mod:`guildkeeper.services.moderation_actions`.

Temporary bans are rows in ``temp_bans``; the tasks cog lifts the ones
returned by :func:`due_temp_bans` and closes them with
:func:`close_temp_ban`.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from guildkeeper.database.engine import get_session
from guildkeeper.database.models import (
    MemberWarning,
    ModAction,
    ModActionType,
    TempBan,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from guildkeeper.engine.guild_config import WarnThresholds

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500


def _active_count(session: Session, guild_id: int, user_id: int) -> int:
    return session.scalar(
        select(func.count())
        .select_from(MemberWarning)
        .where(
            MemberWarning.guild_id == guild_id,
            MemberWarning.user_id == user_id,
            MemberWarning.active.is_(True),
        )
    ) or 0


def add_warning(
    engine: Engine,
    guild_id: int,
    user_id: int,
    moderator_id: int,
    reason: str,
) -> int:
    """Record a warning (and its audit entry).  Returns the active warning count."""
    reason = reason.strip()[:MAX_REASON_LENGTH]
    with get_session(engine) as session:
        session.add(MemberWarning(
            guild_id=guild_id,
            user_id=user_id,
            moderator_id=moderator_id,
            reason=reason,
        ))
        session.add(ModAction(
            guild_id=guild_id,
            action=ModActionType.WARN,
            target_id=user_id,
            moderator_id=moderator_id,
            reason=reason,
        ))
        session.flush()
        count = _active_count(session, guild_id, user_id)

    logger.info(
        "User %s warned in guild %s by %s (%d active)",
        user_id, guild_id, moderator_id, count,
    )
    return count


def list_warnings(
    engine: Engine,
    guild_id: int,
    user_id: int | None = None,
    *,
    include_inactive: bool = False,
    limit: int = 100,
) -> list[MemberWarning]:
    """Warnings newest first, optionally for one member only."""
    stmt = select(MemberWarning).where(MemberWarning.guild_id == guild_id)
    if user_id is not None:
        stmt = stmt.where(MemberWarning.user_id == user_id)
    if not include_inactive:
        stmt = stmt.where(MemberWarning.active.is_(True))
    stmt = stmt.order_by(MemberWarning.id.desc()).limit(limit)

    with Session(engine, expire_on_commit=False) as session:
        return list(session.scalars(stmt).all())


def clear_warnings(
    engine: Engine,
    guild_id: int,
    user_id: int,
    moderator_id: int,
) -> int:
    """Deactivate all of a member's warnings.  Returns how many were cleared."""
    with get_session(engine) as session:
        result = session.execute(
            update(MemberWarning)
            .where(
                MemberWarning.guild_id == guild_id,
                MemberWarning.user_id == user_id,
                MemberWarning.active.is_(True),
            )
            .values(active=False)
            .execution_options(synchronize_session=False)
        )
        cleared = result.rowcount or 0
        session.add(ModAction(
            guild_id=guild_id,
            action=ModActionType.CLEAR_WARNINGS,
            target_id=user_id,
            moderator_id=moderator_id,
            reason=f"Cleared {cleared} warning(s)",
        ))

    logger.info("Cleared %d warning(s) for user %s in guild %s", cleared, user_id, guild_id)
    return cleared


def log_mod_action(
    engine: Engine,
    guild_id: int,
    action: ModActionType,
    target_id: int,
    moderator_id: int,
    reason: str | None = None,
    duration: timedelta | None = None,
) -> None:
    with get_session(engine) as session:
        session.add(ModAction(
            guild_id=guild_id,
            action=action,
            target_id=target_id,
            moderator_id=moderator_id,
            reason=reason[:MAX_REASON_LENGTH] if reason else None,
            duration_seconds=int(duration.total_seconds()) if duration else None,
        ))


# ---------------------------------------------------------------------------
# Temporary bans
# ---------------------------------------------------------------------------
def record_temp_ban(
    engine: Engine,
    guild_id: int,
    user_id: int,
    moderator_id: int,
    reason: str | None,
    duration: timedelta,
    *,
    now: datetime | None = None,
) -> datetime:
    """Store a tempban (and its audit entry).  Returns when it expires.

    A member has at most one active tempban per guild; a new one replaces
    the old expiry.
    """
    now = now or datetime.now(UTC)
    expires_at = now + duration
    reason = reason[:MAX_REASON_LENGTH] if reason else None
    with get_session(engine) as session:
        session.execute(
            update(TempBan)
            .where(
                TempBan.guild_id == guild_id,
                TempBan.user_id == user_id,
                TempBan.active.is_(True),
            )
            .values(active=False)
            .execution_options(synchronize_session=False)
        )
        session.add(TempBan(
            guild_id=guild_id,
            user_id=user_id,
            moderator_id=moderator_id,
            reason=reason,
            expires_at=expires_at,
        ))
        session.add(ModAction(
            guild_id=guild_id,
            action=ModActionType.TEMPBAN,
            target_id=user_id,
            moderator_id=moderator_id,
            reason=reason,
            duration_seconds=int(duration.total_seconds()),
        ))

    logger.info(
        "User %s tempbanned in guild %s by %s until %s",
        user_id, guild_id, moderator_id, expires_at.isoformat(),
    )
    return expires_at


def due_temp_bans(engine: Engine, now: datetime | None = None, limit: int = 100) -> list[TempBan]:
    """Active tempbans whose expiry has passed, oldest first."""
    now = now or datetime.now(UTC)
    with Session(engine) as session:
        return list(session.scalars(
            select(TempBan)
            .where(TempBan.active.is_(True), TempBan.expires_at <= now)
            .order_by(TempBan.expires_at)
            .limit(limit)
        ).all())


def close_temp_ban(engine: Engine, ban_id: int) -> bool:
    """Mark one tempban lifted.  False if it was already closed."""
    with get_session(engine) as session:
        result = session.execute(
            update(TempBan)
            .where(TempBan.id == ban_id, TempBan.active.is_(True))
            .values(active=False)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)


def cancel_temp_bans(engine: Engine, guild_id: int, user_id: int) -> int:
    """Close a member's active tempbans after a manual unban."""
    with get_session(engine) as session:
        result = session.execute(
            update(TempBan)
            .where(
                TempBan.guild_id == guild_id,
                TempBan.user_id == user_id,
                TempBan.active.is_(True),
            )
            .values(active=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


def threshold_action(count: int, thresholds: WarnThresholds) -> ModActionType | None:
    """Punishment earned by reaching *count* active warnings, if any.

    Ban takes precedence when both thresholds are met.
    """
    if count >= thresholds.ban:
        return ModActionType.BAN
    if count >= thresholds.kick:
        return ModActionType.KICK
    return None
