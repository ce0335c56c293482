"""
guildkeeper.services.leveling_service — XP Award Path, Rank & Leaderboard
==========================================================================

Shared service module callable by both the bot and the dashboard.

The award path for one message::

    process_message()
      ├─ is_eligible()              config / module / ignored channel+role
      ├─ CooldownGate.try_consume() atomic claim of the member's window
      └─ award()
           ├─ compute_xp_gain()     roll + single multiplier
           ├─ add_xp()              UPDATE … SET xp = xp + d RETURNING
           │                        (INSERT … ON CONFLICT DO NOTHING for new members)
           └─ set_level()           UPDATE … WHERE level < :new

Functions take the engine and gate explicitly; nothing here holds global
state.  All of it is synchronous — cogs call it through ``run_db``.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from guildkeeper.constants import level_for_xp, xp_for_level
from guildkeeper.database.engine import dialect_insert, get_session
from guildkeeper.database.models import GuildMember
from guildkeeper.engine.leveling import (
    RandomSource,
    compute_xp_gain,
    is_eligible,
    level_progress,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from guildkeeper.engine.cooldown import CooldownGate
    from guildkeeper.engine.guild_config import GuildConfig, XpMultiplier

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AwardResult:
    """Outcome of one XP award."""
    xp_gained: int
    new_xp: int
    new_total_xp: int
    old_level: int
    new_level: int
    leveled_up: bool
    created: bool


@dataclass(frozen=True, slots=True)
class RankInfo:
    user_id: int
    xp: int
    total_xp: int
    level: int
    rank: int
    xp_for_next: int
    progress: float
    message_count: int


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    rank: int
    user_id: int
    total_xp: int
    level: int
    message_count: int


# ---------------------------------------------------------------------------
# Storage primitives
# ---------------------------------------------------------------------------
def get_member(engine: Engine, guild_id: int, user_id: int) -> GuildMember | None:
    with Session(engine, expire_on_commit=False) as session:
        return session.get(GuildMember, (guild_id, user_id))


def add_xp(
    session: Session,
    guild_id: int,
    user_id: int,
    delta: int,
    *,
    now: datetime,
) -> tuple[int, int, int, bool]:
    """Atomically add *delta* to the member's ``xp`` and ``total_xp``.

    Returns ``(new_xp, stored_level, new_total_xp, created)``.  A member
    without a row is inserted with ``xp = total_xp = delta`` and level 0.
    """
    bump = (
        update(GuildMember)
        .where(GuildMember.guild_id == guild_id, GuildMember.user_id == user_id)
        .values(
            xp=GuildMember.xp + delta,
            total_xp=GuildMember.total_xp + delta,
            message_count=GuildMember.message_count + 1,
            last_xp_gain_at=now,
        )
        .returning(GuildMember.xp, GuildMember.level, GuildMember.total_xp)
        .execution_options(synchronize_session=False)
    )

    row = session.execute(bump).first()
    if row is not None:
        return row.xp, row.level, row.total_xp, False

    insert = (
        dialect_insert(session, GuildMember)
        .values(
            guild_id=guild_id,
            user_id=user_id,
            xp=delta,
            total_xp=delta,
            level=0,
            message_count=1,
            last_xp_gain_at=now,
        )
        .on_conflict_do_nothing(index_elements=[GuildMember.guild_id, GuildMember.user_id])
        .returning(GuildMember.xp, GuildMember.level, GuildMember.total_xp)
    )
    row = session.execute(insert).first()
    if row is not None:
        return row.xp, row.level, row.total_xp, True

    # Lost the insert race to a concurrent first message; the row exists now.
    row = session.execute(bump).first()
    if row is None:
        raise RuntimeError(
            f"guild_members row for user {user_id} in guild {guild_id} vanished mid-award"
        )
    return row.xp, row.level, row.total_xp, False


def set_level(session: Session, guild_id: int, user_id: int, level: int) -> bool:
    """Raise the member's stored level to *level*.

    Guarded by ``level < :level`` so it can never lower a level.  Returns
    True only for the call that actually moved it.
    """
    stmt = (
        update(GuildMember)
        .where(
            GuildMember.guild_id == guild_id,
            GuildMember.user_id == user_id,
            GuildMember.level < level,
        )
        .values(level=level)
        .returning(GuildMember.level)
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).first() is not None


# ---------------------------------------------------------------------------
# Award
# ---------------------------------------------------------------------------
def award(
    engine: Engine,
    guild_id: int,
    user_id: int,
    xp_range: tuple[int, int],
    multipliers: Sequence[XpMultiplier],
    role_ids: Collection[int],
    *,
    rng: RandomSource | None = None,
    now: datetime | None = None,
) -> AwardResult:
    """Grant one message's worth of XP and detect a level transition.

    A brand-new member is created at level 0 and never reports a level-up
    on that first award, even when the first roll is already past a level
    boundary; the next award catches the level up.
    """
    now = now or datetime.now(UTC)
    gained = compute_xp_gain(xp_range, multipliers, role_ids, rng)

    with get_session(engine) as session:
        new_xp, old_level, new_total, created = add_xp(
            session, guild_id, user_id, gained, now=now,
        )

        if created:
            return AwardResult(
                xp_gained=gained,
                new_xp=new_xp,
                new_total_xp=new_total,
                old_level=0,
                new_level=0,
                leveled_up=False,
                created=True,
            )

        new_level = level_for_xp(new_total)
        leveled_up = False
        if new_level > old_level:
            # Another handler may have written this level first; only the
            # one whose guarded write lands reports the transition.
            leveled_up = set_level(session, guild_id, user_id, new_level)

    if leveled_up:
        logger.info(
            "User %s reached level %d in guild %s (total XP %d)",
            user_id, new_level, guild_id, new_total,
        )

    return AwardResult(
        xp_gained=gained,
        new_xp=new_xp,
        new_total_xp=new_total,
        old_level=old_level,
        new_level=max(new_level, old_level),
        leveled_up=leveled_up,
        created=False,
    )


def process_message(
    engine: Engine,
    gate: CooldownGate,
    config: GuildConfig | None,
    *,
    guild_id: int,
    user_id: int,
    channel_id: int,
    role_ids: Collection[int],
    rng: RandomSource | None = None,
    now: datetime | None = None,
) -> AwardResult | None:
    """Run one guild message through the award path.

    Returns None when the message doesn't earn XP (no config, module off,
    ignored channel or role, cooldown running).  Database errors propagate;
    if the award fails after the cooldown was claimed, the claim is released
    so the member isn't locked out for a message that earned nothing.
    """
    if not is_eligible(config, channel_id, role_ids):
        return None

    leveling = config.leveling
    if not gate.try_consume(guild_id, user_id, leveling.xp_cooldown, now=now):
        return None

    try:
        return award(
            engine,
            guild_id,
            user_id,
            leveling.xp_range,
            leveling.xp_multipliers,
            role_ids,
            rng=rng,
            now=now,
        )
    except Exception:
        try:
            gate.release(guild_id, user_id)
        except Exception:
            logger.exception(
                "Could not release XP cooldown for user %s in guild %s",
                user_id, guild_id,
            )
        raise


# ---------------------------------------------------------------------------
# Rank & leaderboard
# ---------------------------------------------------------------------------
def get_rank(engine: Engine, guild_id: int, user_id: int) -> RankInfo | None:
    """Member's position in the guild: 1 + members with strictly more total XP."""
    with Session(engine) as session:
        member = session.get(GuildMember, (guild_id, user_id))
        if member is None:
            return None

        ahead = session.scalar(
            select(func.count())
            .select_from(GuildMember)
            .where(
                GuildMember.guild_id == guild_id,
                GuildMember.total_xp > member.total_xp,
            )
        ) or 0

        progress = level_progress(member.total_xp)
        return RankInfo(
            user_id=user_id,
            xp=member.xp,
            total_xp=member.total_xp,
            level=member.level,
            rank=ahead + 1,
            xp_for_next=xp_for_level(member.level + 1),
            progress=progress.progress,
            message_count=member.message_count,
        )


def get_leaderboard(
    engine: Engine,
    guild_id: int,
    page: int = 1,
    per_page: int = 10,
) -> tuple[list[LeaderboardEntry], int]:
    """One page of the guild leaderboard plus the guild's member count."""
    page = max(1, page)
    offset = (page - 1) * per_page

    with Session(engine) as session:
        total = session.scalar(
            select(func.count())
            .select_from(GuildMember)
            .where(GuildMember.guild_id == guild_id)
        ) or 0

        rows = session.scalars(
            select(GuildMember)
            .where(GuildMember.guild_id == guild_id)
            .order_by(GuildMember.total_xp.desc(), GuildMember.user_id.asc())
            .offset(offset)
            .limit(per_page)
        ).all()

        entries = [
            LeaderboardEntry(
                rank=offset + i + 1,
                user_id=m.user_id,
                total_xp=m.total_xp,
                level=m.level,
                message_count=m.message_count,
            )
            for i, m in enumerate(rows)
        ]

    return entries, total
