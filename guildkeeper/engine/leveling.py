"""
guildkeeper.engine.leveling — Pure Leveling Calculations
=========================================================

Everything in this module is a pure function: no database, no Discord, no
I/O.  The award path in :mod:`guildkeeper.services.leveling_service` feeds
it config and role ids and persists whatever it computes.

Pipeline for one message::

    is_eligible(config, channel, roles)   → False = silently skip
    roll_xp((min, max), rng)               → base XP, inclusive range
    select_multiplier(multipliers, roles)  → first configured match wins
    apply_multiplier(xp, multiplier)       → floor(xp × m)
    level_for_xp(total_xp)                 → floor(0.1 × √total_xp)
"""

from __future__ import annotations

import random
from collections.abc import Collection, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from guildkeeper.constants import level_for_xp, xp_for_level

if TYPE_CHECKING:
    from guildkeeper.engine.guild_config import (
        GuildConfig,
        RoleReward,
        XpMultiplier,
    )


class RandomSource(Protocol):
    def randint(self, a: int, b: int) -> int: ...


@dataclass(frozen=True, slots=True)
class LevelProgress:
    """Where a member sits between their current and next level."""
    level: int
    current_level_xp: int
    next_level_xp: int
    progress: float  # 0.0 – 1.0


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------
def is_eligible(
    config: GuildConfig | None,
    channel_id: int,
    role_ids: Collection[int],
) -> bool:
    """Whether a message in *channel_id* by a member holding *role_ids* may earn XP.

    Missing config, the leveling module switched off, an ignored channel
    and an ignored role all disqualify.  The cooldown is checked separately.
    """
    if config is None or not config.leveling_active:
        return False
    leveling = config.leveling
    if channel_id in leveling.ignored_channels:
        return False
    if any(role_id in role_ids for role_id in leveling.ignored_roles):
        return False
    return True


# ---------------------------------------------------------------------------
# XP calculation
# ---------------------------------------------------------------------------
def roll_xp(xp_range: tuple[int, int], rng: RandomSource | None = None) -> int:
    """Draw a base XP amount uniformly from *xp_range*, both ends inclusive."""
    low, high = xp_range
    return (rng or random).randint(low, high)


def select_multiplier(
    multipliers: Sequence[XpMultiplier],
    role_ids: Collection[int],
) -> float | None:
    """Multiplier of the first configured entry whose role the member holds.

    Multipliers never stack: a member holding roles for 2× and 3× gets
    whichever appears first in the guild's list.
    """
    for entry in multipliers:
        if entry.role_id in role_ids:
            return entry.multiplier
    return None


def apply_multiplier(xp: int, multiplier: float | None) -> int:
    if multiplier is None:
        return xp
    return int(xp * multiplier)


def compute_xp_gain(
    xp_range: tuple[int, int],
    multipliers: Sequence[XpMultiplier],
    role_ids: Collection[int],
    rng: RandomSource | None = None,
) -> int:
    """Base roll with the member's (single) multiplier applied."""
    base = roll_xp(xp_range, rng)
    return apply_multiplier(base, select_multiplier(multipliers, role_ids))


# ---------------------------------------------------------------------------
# Levels & rewards
# ---------------------------------------------------------------------------
def level_progress(total_xp: int) -> LevelProgress:
    level = level_for_xp(total_xp)
    current = xp_for_level(level)
    nxt = xp_for_level(level + 1)
    span = nxt - current
    progress = (total_xp - current) / span if span > 0 else 0.0
    return LevelProgress(
        level=level,
        current_level_xp=current,
        next_level_xp=nxt,
        progress=max(0.0, min(1.0, progress)),
    )


def rewards_for_level(
    role_rewards: Sequence[RoleReward],
    new_level: int,
) -> tuple[list[int], list[int]]:
    """Split *role_rewards* into ``(grant, revoke)`` role-id lists for *new_level*.

    Grant every reward configured for exactly *new_level*; revoke every
    lower-level reward flagged ``remove_on_higher_level``.
    """
    grant: list[int] = []
    revoke: list[int] = []
    for reward in role_rewards:
        if reward.level == new_level:
            grant.append(reward.role_id)
        elif reward.level < new_level and reward.remove_on_higher_level:
            revoke.append(reward.role_id)
    return grant, revoke
