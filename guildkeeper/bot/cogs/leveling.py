"""
guildkeeper.bot.cogs.leveling — Message XP Listener
====================================================

The single entry point of the XP system: one call per inbound, non-bot,
guild message.

Pipeline:
1. on_message fires → gate checks (bot author, DM, uncached member)
2. Fetch the guild config from the cache
3. Auto-moderation; a message it acts on earns no XP
4. ``leveling_service.process_message`` on a worker thread via run_db
   (eligibility, cooldown claim, atomic XP add, guarded level write)
5. On a level transition, ``level_up_service.on_level_up`` syncs reward
   roles and posts the notification
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from guildkeeper.database.engine import run_db
from guildkeeper.services.level_up_service import on_level_up
from guildkeeper.services.leveling_service import process_message

if TYPE_CHECKING:
    from guildkeeper.bot.core import GuildKeeperBot

logger = logging.getLogger(__name__)


class Leveling(commands.Cog, name="Leveling"):
    """Awards XP for guild messages and reacts to level-ups."""

    def __init__(self, bot: GuildKeeperBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        try:
            await self._handle_message(message)
        except Exception:
            # No XP for this message; the next one tries again.
            logger.exception(
                "Error awarding XP for message %s from user %s",
                message.id,
                message.author.id,
                extra={"event_type": "message", "user_id": message.author.id,
                       "message_id": message.id},
            )

    async def _handle_message(self, message: discord.Message) -> None:
        """Inner message handler (separated for error isolation)."""
        if message.author.bot:
            return
        if message.guild is None:
            return
        member = message.author
        if not isinstance(member, discord.Member):
            return

        config = await self.bot.get_guild_config(message.guild.id)
        if config is None:
            return

        if await self.bot.automod.handle_message(message, config):
            return

        role_ids = {role.id for role in member.roles}
        result = await run_db(
            process_message,
            self.bot.engine,
            self.bot.cooldown_gate,
            config,
            guild_id=message.guild.id,
            user_id=member.id,
            channel_id=message.channel.id,
            role_ids=role_ids,
        )
        if result is None:
            return

        logger.debug(
            "XP awarded: %s +%d (total %d, level %d)",
            member.display_name, result.xp_gained, result.new_total_xp, result.new_level,
        )

        if result.leveled_up:
            await on_level_up(
                member,
                result.new_level,
                config.leveling,
                source_channel=message.channel,
            )


async def setup(bot: GuildKeeperBot) -> None:
    await bot.add_cog(Leveling(bot))
