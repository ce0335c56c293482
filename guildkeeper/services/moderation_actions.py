"""
guildkeeper.services.moderation_actions — Discord-Side Moderation
==================================================================

The actions a moderator (or auto-moderation) takes against a member:
kick, ban, tempban, unban, timeout and its removal, plus the warning
threshold punishments.  Each one:

1. DMs the member first when ``moderation.dmOnAction`` is on (a kicked or
   banned member can no longer be reached),
2. performs the Discord call,
3. on success appends to ``mod_actions`` and mirrors the action to the
   mod-log channel.

A missing permission or failed Discord call is logged and reported back
as an unsuccessful :class:`ActionOutcome`; nothing is audited for it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import discord

from guildkeeper.database.engine import run_db
from guildkeeper.database.models import ModActionType
from guildkeeper.services.embeds import build_action_dm_embed, build_mod_log_embed
from guildkeeper.services.moderation_service import (
    cancel_temp_bans,
    log_mod_action,
    record_temp_ban,
    threshold_action,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from guildkeeper.database.models import TempBan
    from guildkeeper.engine.guild_config import GuildConfig

logger = logging.getLogger(__name__)

# Discord's upper bound for a member timeout
MAX_TIMEOUT = timedelta(days=28)


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    ok: bool
    note: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
async def dm_member(member: discord.abc.User, embed: discord.Embed) -> bool:
    try:
        await member.send(embed=embed)
    except discord.HTTPException:
        logger.info("Could not DM user %s (DMs closed)", member.id)
        return False
    return True


async def post_mod_log(guild: discord.Guild, config: GuildConfig, embed: discord.Embed) -> None:
    """Send *embed* to the guild's mod-log channel, if one is configured."""
    channel_id = config.moderation.mod_log_channel_id
    if channel_id is None:
        return
    channel = guild.get_channel(channel_id)
    if channel is None:
        logger.warning("Mod-log channel %s not found in guild %s", channel_id, guild.id)
        return
    try:
        await channel.send(embed=embed)
    except discord.HTTPException:
        logger.exception("Failed to post to mod-log channel %s", channel_id)


async def _attempt(verb: str, target_id: int, guild_id: int, call: Awaitable[Any]) -> ActionOutcome | None:
    """Await a Discord call; an outcome describing the failure, or None."""
    try:
        await call
    except discord.Forbidden:
        logger.warning("Missing permission to %s user %s in guild %s", verb, target_id, guild_id)
        return ActionOutcome(False, f"I lack permission to {verb} them.")
    except discord.HTTPException:
        logger.exception("Failed to %s user %s in guild %s", verb, target_id, guild_id)
        return ActionOutcome(False, f"The {verb} failed.")
    return None


async def _maybe_dm(
    member: discord.abc.User,
    guild: discord.Guild,
    config: GuildConfig,
    action: ModActionType,
    reason: str | None,
    duration: timedelta | None = None,
) -> None:
    if config.moderation.dm_on_action and isinstance(member, discord.Member):
        await dm_member(member, build_action_dm_embed(guild.name, action, reason, duration))


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------
async def kick_member(
    engine: Engine,
    member: discord.Member,
    moderator: discord.abc.User,
    reason: str | None,
    config: GuildConfig,
) -> ActionOutcome:
    guild = member.guild
    await _maybe_dm(member, guild, config, ModActionType.KICK, reason)
    failure = await _attempt("kick", member.id, guild.id, member.kick(reason=reason))
    if failure:
        return failure

    await run_db(log_mod_action, engine, guild.id, ModActionType.KICK, member.id, moderator.id, reason)
    await post_mod_log(
        guild, config,
        build_mod_log_embed(ModActionType.KICK, member.mention, moderator.mention, reason),
    )
    return ActionOutcome(True, f"**{member}** was kicked.")


async def ban_user(
    engine: Engine,
    guild: discord.Guild,
    user: discord.abc.User,
    moderator: discord.abc.User,
    reason: str | None,
    config: GuildConfig,
    *,
    duration: timedelta | None = None,
    delete_message_days: int = 0,
) -> ActionOutcome:
    """Ban *user*, who need not be a member.  A *duration* makes it a tempban."""
    action = ModActionType.TEMPBAN if duration else ModActionType.BAN
    await _maybe_dm(user, guild, config, action, reason, duration)
    failure = await _attempt(
        "ban", user.id, guild.id,
        guild.ban(user, reason=reason, delete_message_seconds=delete_message_days * 86400),
    )
    if failure:
        return failure

    if duration:
        expires_at = await run_db(
            record_temp_ban, engine, guild.id, user.id, moderator.id, reason, duration,
        )
        note = f"**{user}** was banned until {discord.utils.format_dt(expires_at, 'f')}."
    else:
        await run_db(cancel_temp_bans, engine, guild.id, user.id)
        await run_db(log_mod_action, engine, guild.id, ModActionType.BAN, user.id, moderator.id, reason)
        note = f"**{user}** was banned."

    await post_mod_log(
        guild, config,
        build_mod_log_embed(action, user.mention, moderator.mention, reason, duration=duration),
    )
    return ActionOutcome(True, note)


async def unban_user(
    engine: Engine,
    guild: discord.Guild,
    user_id: int,
    moderator: discord.abc.User,
    reason: str | None,
    config: GuildConfig,
) -> ActionOutcome:
    """Lift a ban, closing any tempban that would have lifted it later."""
    try:
        await guild.unban(discord.Object(id=user_id), reason=reason)
    except discord.NotFound:
        return ActionOutcome(False, "That user isn't banned.")
    except discord.Forbidden:
        logger.warning("Missing permission to unban user %s in guild %s", user_id, guild.id)
        return ActionOutcome(False, "I lack permission to unban them.")
    except discord.HTTPException:
        logger.exception("Failed to unban user %s in guild %s", user_id, guild.id)
        return ActionOutcome(False, "The unban failed.")

    await run_db(cancel_temp_bans, engine, guild.id, user_id)
    await run_db(log_mod_action, engine, guild.id, ModActionType.UNBAN, user_id, moderator.id, reason)
    await post_mod_log(
        guild, config,
        build_mod_log_embed(ModActionType.UNBAN, f"<@{user_id}>", moderator.mention, reason),
    )
    return ActionOutcome(True, f"<@{user_id}> was unbanned.")


async def lift_expired_temp_ban(
    engine: Engine,
    guild: discord.Guild,
    ban: TempBan,
    config: GuildConfig,
) -> bool:
    """Unban for an expired tempban.  True when the row can be closed.

    A ban someone already lifted, or one the bot may no longer lift, is
    closed too; any other Discord error leaves it for the next run.
    """
    reason = "Temporary ban expired"
    try:
        await guild.unban(discord.Object(id=ban.user_id), reason=reason)
    except discord.NotFound:
        logger.info("Tempban %s: user %s was already unbanned", ban.id, ban.user_id)
        return True
    except discord.Forbidden:
        logger.warning(
            "Tempban %s: missing permission to unban user %s in guild %s",
            ban.id, ban.user_id, guild.id,
        )
        return True
    except discord.HTTPException:
        logger.exception("Tempban %s: unban of user %s failed, will retry", ban.id, ban.user_id)
        return False

    moderator_id = guild.me.id if guild.me else ban.moderator_id
    await run_db(log_mod_action, engine, guild.id, ModActionType.UNBAN, ban.user_id, moderator_id, reason)
    await post_mod_log(
        guild, config,
        build_mod_log_embed(ModActionType.UNBAN, f"<@{ban.user_id}>", f"<@{moderator_id}>", reason),
    )
    logger.info("Tempban %s expired: user %s unbanned in guild %s", ban.id, ban.user_id, guild.id)
    return True


async def timeout_member(
    engine: Engine,
    member: discord.Member,
    moderator: discord.abc.User,
    reason: str | None,
    duration: timedelta,
    config: GuildConfig,
) -> ActionOutcome:
    duration = min(duration, MAX_TIMEOUT)
    guild = member.guild
    await _maybe_dm(member, guild, config, ModActionType.TIMEOUT, reason, duration)
    failure = await _attempt("time out", member.id, guild.id, member.timeout(duration, reason=reason))
    if failure:
        return failure

    await run_db(
        log_mod_action, engine, guild.id, ModActionType.TIMEOUT, member.id, moderator.id,
        reason, duration,
    )
    await post_mod_log(
        guild, config,
        build_mod_log_embed(
            ModActionType.TIMEOUT, member.mention, moderator.mention, reason, duration=duration,
        ),
    )
    return ActionOutcome(True, f"**{member}** was timed out.")


async def remove_timeout(
    engine: Engine,
    member: discord.Member,
    moderator: discord.abc.User,
    reason: str | None,
    config: GuildConfig,
) -> ActionOutcome:
    guild = member.guild
    failure = await _attempt(
        "remove the timeout of", member.id, guild.id, member.timeout(None, reason=reason),
    )
    if failure:
        return failure

    await run_db(log_mod_action, engine, guild.id, ModActionType.UNTIMEOUT, member.id, moderator.id, reason)
    await post_mod_log(
        guild, config,
        build_mod_log_embed(ModActionType.UNTIMEOUT, member.mention, moderator.mention, reason),
    )
    return ActionOutcome(True, f"**{member}**'s timeout was removed.")


async def enforce_warn_threshold(
    engine: Engine,
    member: discord.Member,
    count: int,
    moderator: discord.abc.User,
    config: GuildConfig,
) -> str | None:
    """Kick or ban when *count* reaches a threshold.  Returns a note for the reply."""
    action = threshold_action(count, config.moderation.warn_thresholds)
    if action is None:
        return None

    reason = f"Reached {count} warnings"
    if action is ModActionType.BAN:
        outcome = await ban_user(engine, member.guild, member, moderator, reason, config)
    else:
        outcome = await kick_member(engine, member, moderator, reason, config)

    if not outcome.ok:
        return f"⚠️ Threshold reached: {outcome.note}"
    verb = "banned" if action is ModActionType.BAN else "kicked"
    return f"🔨 Automatically {verb} ({reason.lower()})."
