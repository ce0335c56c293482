"""
guildkeeper.bot.cogs.tasks — Periodic Background Tasks
=======================================================

Maintenance jobs on ``discord.ext.tasks`` loops, run in the bot process
through ``run_db()`` so they never block the event loop.

- **Cooldown prune**: every 5 minutes, deletes expired ``xp_cooldowns``
  markers.  Expired markers are already ignored by the gate; pruning only
  keeps the table small.
- **Tempban expiry**: every minute, unbans members whose temporary ban
  has run out and closes the ban.
- **Spam window prune**: every 5 minutes, forgets automod message
  history for members who have gone quiet.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from guildkeeper.database.engine import run_db
from guildkeeper.engine.guild_config import GuildConfig
from guildkeeper.services.moderation_actions import lift_expired_temp_ban
from guildkeeper.services.moderation_service import close_temp_ban, due_temp_bans

if TYPE_CHECKING:
    from guildkeeper.bot.core import GuildKeeperBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background maintenance tasks."""

    def __init__(self, bot: GuildKeeperBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.cooldown_prune_loop.start()
        self.tempban_expiry_loop.start()
        self.spam_prune_loop.start()

    async def cog_unload(self) -> None:
        self.cooldown_prune_loop.cancel()
        self.tempban_expiry_loop.cancel()
        self.spam_prune_loop.cancel()

    @tasks.loop(minutes=5)
    async def cooldown_prune_loop(self) -> None:
        try:
            await run_db(self.bot.cooldown_gate.prune_expired)
        except Exception:
            logger.exception("Cooldown prune failed", extra={"task": "cooldown_prune"})

    @tasks.loop(minutes=1)
    async def tempban_expiry_loop(self) -> None:
        try:
            await self.lift_expired_bans()
        except Exception:
            logger.exception("Tempban expiry failed", extra={"task": "tempban_expiry"})

    async def lift_expired_bans(self) -> int:
        """Lift every due tempban.  Returns how many were closed."""
        closed = 0
        for ban in await run_db(due_temp_bans, self.bot.engine):
            guild = self.bot.get_guild(ban.guild_id)
            if guild is None:
                logger.info("Tempban %s: bot is no longer in guild %s", ban.id, ban.guild_id)
                lifted = True
            else:
                config = await self.bot.get_guild_config(guild.id) or GuildConfig()
                lifted = await lift_expired_temp_ban(self.bot.engine, guild, ban, config)
            if lifted and await run_db(close_temp_ban, self.bot.engine, ban.id):
                closed += 1
        return closed

    @tasks.loop(minutes=5)
    async def spam_prune_loop(self) -> None:
        dropped = self.bot.automod.tracker.prune()
        if dropped:
            logger.debug("Pruned spam history for %d member(s)", dropped)

    @cooldown_prune_loop.before_loop
    @tempban_expiry_loop.before_loop
    async def _wait_until_ready(self) -> None:
        await self.bot.wait_until_ready()


async def setup(bot: GuildKeeperBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
