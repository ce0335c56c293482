"""
guildkeeper.services.automod_service — Auto-Moderation
=======================================================

Runs every guild message through the filters in
:mod:`guildkeeper.engine.automod` before XP is considered.  When a rule
matches, the configured action is carried out:

- ``delete``: remove the message
- ``warn``: remove the message and record a warning (thresholds apply)
- ``mute``: remove the message and time the member out
- ``kick`` / ``ban``: remove the member (spam only)

Actions are taken in the bot's own name and mirrored to the mod-log
channel.  A message that triggered a rule never earns XP.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

import discord

from guildkeeper.database.engine import run_db
from guildkeeper.database.models import ModActionType
from guildkeeper.engine.automod import SpamTracker, Violation, evaluate
from guildkeeper.services.embeds import build_automod_log_embed, build_warning_dm_embed
from guildkeeper.services.moderation_actions import (
    ban_user,
    dm_member,
    enforce_warn_threshold,
    kick_member,
    post_mod_log,
    timeout_member,
)
from guildkeeper.services.moderation_service import add_warning, log_mod_action

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from guildkeeper.engine.guild_config import GuildConfig

logger = logging.getLogger(__name__)

_DELETING_ACTIONS = frozenset({"delete", "warn", "mute"})


class AutoModerator:
    """Message filters for one bot process.

    Parameters
    ----------
    engine:
        Database engine for warnings and the audit trail.
    tracker:
        Spam window store; a fresh in-memory one by default.
    """

    def __init__(self, engine: Engine, tracker: SpamTracker | None = None) -> None:
        self.engine = engine
        self.tracker = tracker or SpamTracker()

    async def handle_message(self, message: discord.Message, config: GuildConfig) -> bool:
        """Apply the guild's filters.  True when the message was acted on."""
        if not config.automod_active:
            return False
        member = message.author
        if not isinstance(member, discord.Member):
            return False

        automod = config.automod
        if message.channel.id in automod.ignored_channels:
            return False
        if any(role.id in automod.ignored_roles for role in member.roles):
            return False

        recent = 0
        if automod.anti_spam.enabled:
            recent = self.tracker.hit(member.guild.id, member.id, automod.anti_spam.interval)

        violation = evaluate(automod, message.content or "", recent)
        if violation is None:
            return False

        logger.info(
            "AutoMod %s rule hit by user %s in guild %s: %s",
            violation.rule, member.id, member.guild.id, violation.action,
        )
        try:
            await self._enforce(message, member, violation, config)
        except Exception:
            logger.exception(
                "AutoMod %s failed for message %s", violation.action, message.id,
                extra={"event_type": "automod", "user_id": member.id, "message_id": message.id},
            )
        return True

    async def _enforce(
        self,
        message: discord.Message,
        member: discord.Member,
        violation: Violation,
        config: GuildConfig,
    ) -> None:
        guild = member.guild
        me = guild.me
        reason = f"[AutoMod] {violation.reason}"

        if violation.action in _DELETING_ACTIONS:
            await self._delete(message, member, me, reason)

        if violation.action == "warn":
            count = await run_db(add_warning, self.engine, guild.id, member.id, me.id, reason)
            if config.moderation.dm_on_action:
                await dm_member(member, build_warning_dm_embed(guild.name, reason, count))
            await enforce_warn_threshold(self.engine, member, count, me, config)
        elif violation.action == "mute":
            minutes = violation.mute_minutes or 10
            await timeout_member(self.engine, member, me, reason, timedelta(minutes=minutes), config)
        elif violation.action == "kick":
            await kick_member(self.engine, member, me, reason, config)
        elif violation.action == "ban":
            await ban_user(self.engine, guild, member, me, reason, config)

        await post_mod_log(
            guild, config,
            build_automod_log_embed(
                member.mention,
                getattr(message.channel, "mention", f"<#{message.channel.id}>"),
                violation.action,
                violation.reason,
                message.content or "",
            ),
        )

    async def _delete(
        self,
        message: discord.Message,
        member: discord.Member,
        me: discord.Member,
        reason: str,
    ) -> None:
        try:
            await message.delete()
        except discord.NotFound:
            return
        except discord.HTTPException:
            logger.warning(
                "AutoMod could not delete message %s in channel %s",
                message.id, message.channel.id,
            )
            return
        await run_db(
            log_mod_action, self.engine, member.guild.id, ModActionType.AUTOMOD_DELETE,
            member.id, me.id, reason,
        )
