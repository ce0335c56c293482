"""
guildkeeper.bot.cogs.levels — /rank and /leaderboard
=====================================================
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from guildkeeper.database.engine import run_db
from guildkeeper.services.embeds import (
    build_error_embed,
    build_leaderboard_embed,
    build_rank_embed,
)
from guildkeeper.services.leveling_service import get_leaderboard, get_rank

if TYPE_CHECKING:
    from guildkeeper.bot.core import GuildKeeperBot

logger = logging.getLogger(__name__)

LEADERBOARD_PAGE_SIZE = 10


class Levels(commands.Cog, name="Levels"):
    """Read-only views of members' leveling progress."""

    def __init__(self, bot: GuildKeeperBot) -> None:
        self.bot = bot

    @app_commands.command(name="rank", description="Show your (or another member's) level and rank.")
    @app_commands.describe(member="Member to look up (defaults to you)")
    @app_commands.guild_only()
    async def rank(
        self,
        interaction: discord.Interaction,
        member: discord.Member | None = None,
    ) -> None:
        target = member or interaction.user
        if target.bot:
            await interaction.response.send_message(
                embed=build_error_embed("Bots don't earn XP."), ephemeral=True,
            )
            return

        info = await run_db(get_rank, self.bot.engine, interaction.guild_id, target.id)
        if info is None:
            await interaction.response.send_message(
                embed=build_error_embed(f"**{target.display_name}** hasn't earned any XP yet."),
                ephemeral=True,
            )
            return

        await interaction.response.send_message(
            embed=build_rank_embed(target.display_name, target.display_avatar.url, info),
        )

    @app_commands.command(name="leaderboard", description="Show the server XP leaderboard.")
    @app_commands.describe(page="Page number (10 members per page)")
    @app_commands.guild_only()
    async def leaderboard(
        self,
        interaction: discord.Interaction,
        page: app_commands.Range[int, 1, 1000] = 1,
    ) -> None:
        entries, total = await run_db(
            get_leaderboard, self.bot.engine, interaction.guild_id, page, LEADERBOARD_PAGE_SIZE,
        )
        await interaction.response.send_message(
            embed=build_leaderboard_embed(
                interaction.guild.name if interaction.guild else "Server",
                entries, page, total, LEADERBOARD_PAGE_SIZE,
            ),
        )


async def setup(bot: GuildKeeperBot) -> None:
    await bot.add_cog(Levels(bot))
