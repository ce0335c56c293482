"""
guildkeeper.services.level_up_service — Level-Up Reactions
===========================================================

Runs after :func:`~guildkeeper.services.leveling_service.award` reports a
level transition: synchronizes the member's reward roles and sends the
single level-up notification.

Every Discord call is isolated.  A missing permission on one role doesn't
stop the other roles, and a failed notification doesn't undo the roles.
Nothing here touches the database; the level is already persisted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from guildkeeper.constants import render_template
from guildkeeper.engine.guild_config import LEVEL_UP_CURRENT, LEVEL_UP_DM
from guildkeeper.engine.leveling import rewards_for_level
from guildkeeper.services.embeds import build_level_up_embed

if TYPE_CHECKING:
    from collections.abc import Sequence

    from discord.abc import Messageable

    from guildkeeper.engine.guild_config import LevelingConfig, RoleReward

logger = logging.getLogger(__name__)


async def sync_role_rewards(
    member: discord.Member,
    role_rewards: Sequence[RoleReward],
    new_level: int,
) -> tuple[list[int], list[int]]:
    """Grant this level's reward roles and revoke superseded ones.

    Roles the member already has (for grants) or lacks (for revokes) are
    skipped, so re-running for the same level is a no-op.  Returns the role
    ids actually ``(granted, revoked)``.
    """
    grant, revoke = rewards_for_level(role_rewards, new_level)
    held = {role.id for role in member.roles}
    granted: list[int] = []
    revoked: list[int] = []

    for role_id in grant:
        if role_id in held:
            continue
        try:
            await member.add_roles(
                discord.Object(id=role_id), reason=f"Level {new_level} reward"
            )
            granted.append(role_id)
        except Exception:
            logger.exception(
                "Failed to grant reward role %s to user %s in guild %s",
                role_id, member.id, member.guild.id,
            )

    for role_id in revoke:
        if role_id not in held:
            continue
        try:
            await member.remove_roles(
                discord.Object(id=role_id), reason=f"Superseded by level {new_level} reward"
            )
            revoked.append(role_id)
        except Exception:
            logger.exception(
                "Failed to remove reward role %s from user %s in guild %s",
                role_id, member.id, member.guild.id,
            )

    return granted, revoked


def render_level_up_message(
    template: str,
    member: discord.Member,
    new_level: int,
) -> str:
    return render_template(template, {
        "user": member.mention,
        "username": member.name,
        "level": new_level,
        "server": member.guild.name,
    })


def resolve_destination(
    member: discord.Member,
    level_up_channel: str,
    source_channel: Messageable | None,
) -> Messageable | None:
    """Where the notification goes: the member's DMs, a configured channel,
    or the channel the message was sent in.
    """
    if level_up_channel == LEVEL_UP_DM:
        return member
    if level_up_channel and level_up_channel != LEVEL_UP_CURRENT:
        channel = member.guild.get_channel(int(level_up_channel))
        if channel is None:
            logger.warning(
                "Level-up channel %s not found in guild %s",
                level_up_channel, member.guild.id,
            )
        return channel
    return source_channel


async def announce_level_up(
    member: discord.Member,
    new_level: int,
    leveling: LevelingConfig,
    source_channel: Messageable | None,
) -> bool:
    """Send exactly one level-up embed.  Returns True if it was delivered."""
    destination = resolve_destination(member, leveling.level_up_channel, source_channel)
    if destination is None:
        return False

    description = render_level_up_message(leveling.level_up_message, member, new_level)
    embed = build_level_up_embed(description, member.display_avatar.url)
    try:
        await destination.send(embed=embed)
        return True
    except discord.Forbidden:
        # DMs closed or no send permission in the channel
        logger.info(
            "Cannot deliver level-up notice for user %s in guild %s (forbidden)",
            member.id, member.guild.id,
        )
    except Exception:
        logger.exception(
            "Failed to send level-up notice for user %s in guild %s",
            member.id, member.guild.id,
        )
    return False


async def on_level_up(
    member: discord.Member,
    new_level: int,
    leveling: LevelingConfig,
    *,
    source_channel: Messageable | None = None,
) -> None:
    """Sync reward roles, then notify.  Never raises for Discord-side failures."""
    await sync_role_rewards(member, leveling.role_rewards, new_level)
    await announce_level_up(member, new_level, leveling, source_channel)
