"""
guildkeeper.bot.cogs.membership — Welcome & Leave Messages
===========================================================

On join (``modules.welcome`` and ``welcome.enabled`` both on):
grant every auto-role, post the welcome message (plain or embed), and
optionally DM the new member.  On leave: post the leave message when
``welcome.leaveEnabled`` is on.

Template variables: ``{user}`` ``{username}`` ``{server}`` ``{memberCount}``.
Requires the GUILD_MEMBERS privileged intent.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from guildkeeper.constants import COLOR_SUCCESS, parse_hex_color, render_template
from guildkeeper.services.embeds import build_message_embed

if TYPE_CHECKING:
    from guildkeeper.bot.core import GuildKeeperBot
    from guildkeeper.engine.guild_config import WelcomeConfig

logger = logging.getLogger(__name__)


def member_variables(member: discord.Member) -> dict[str, object]:
    return {
        "user": member.mention,
        "username": member.name,
        "server": member.guild.name,
        "memberCount": member.guild.member_count or 0,
    }


class Membership(commands.Cog, name="Membership"):
    """Greets new members and says goodbye to leaving ones."""

    def __init__(self, bot: GuildKeeperBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        try:
            if member.bot:
                return
            config = await self.bot.get_guild_config(member.guild.id)
            if config is None or not config.welcome_active:
                return
            welcome = config.welcome

            await self._grant_auto_roles(member, welcome)

            variables = member_variables(member)
            if welcome.channel_id is not None:
                channel = member.guild.get_channel(welcome.channel_id)
                if channel is None:
                    logger.warning(
                        "Welcome channel %s not found in guild %s",
                        welcome.channel_id, member.guild.id,
                    )
                else:
                    text = render_template(welcome.message, variables)
                    if welcome.embed_enabled:
                        embed = build_message_embed(
                            text, parse_hex_color(welcome.embed_color, COLOR_SUCCESS),
                        )
                        embed.set_thumbnail(url=member.display_avatar.url)
                        await channel.send(embed=embed)
                    else:
                        await channel.send(text)

            if welcome.dm_enabled and welcome.dm_message:
                try:
                    await member.send(render_template(welcome.dm_message, variables))
                except discord.HTTPException:
                    logger.info("Could not DM welcome to user %s (DMs closed)", member.id)

            logger.info("Member joined: %s (ID: %d)", member.display_name, member.id)

        except Exception:
            logger.exception(
                "Error processing member_join for %s", member.id,
                extra={"event_type": "member_join", "user_id": member.id},
            )

    async def _grant_auto_roles(self, member: discord.Member, welcome: WelcomeConfig) -> None:
        for role_id in welcome.auto_role:
            try:
                await member.add_roles(discord.Object(id=role_id), reason="Auto-role on join")
            except Exception:
                logger.exception(
                    "Failed to add auto-role %s to user %s in guild %s",
                    role_id, member.id, member.guild.id,
                )

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        try:
            if member.bot:
                return
            config = await self.bot.get_guild_config(member.guild.id)
            if config is None or not config.modules.welcome:
                return
            welcome = config.welcome
            if not welcome.leave_enabled or not welcome.leave_message:
                return

            channel_id = welcome.leave_channel_id or welcome.channel_id
            channel = member.guild.get_channel(channel_id) if channel_id else None
            if channel is None:
                return
            await channel.send(render_template(welcome.leave_message, member_variables(member)))
            logger.info("Member left: %s (ID: %d)", member.display_name, member.id)

        except Exception:
            logger.exception(
                "Error processing member_leave for %s", member.id,
                extra={"event_type": "member_leave", "user_id": member.id},
            )


async def setup(bot: GuildKeeperBot) -> None:
    await bot.add_cog(Membership(bot))
