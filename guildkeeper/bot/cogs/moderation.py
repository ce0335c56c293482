"""
guildkeeper.bot.cogs.moderation — Warnings, Kicks, Bans & Timeouts
===================================================================

Slash commands:

- ``/warn add | list | clear``: stored by
  :mod:`guildkeeper.services.moderation_service`.  After each warning the
  guild's thresholds are checked; reaching the ban threshold bans,
  otherwise reaching the kick threshold kicks.
- ``/kick``, ``/ban``, ``/tempban``, ``/unban``, ``/timeout``,
  ``/untimeout``: carried out by
  :mod:`guildkeeper.services.moderation_actions`.

Members are DM'd (when ``moderation.dmOnAction`` is on) and every action
is mirrored to the mod-log channel when one is configured.  Nobody can
act on themselves, the bot, the server owner, or a member whose top role
is not below both theirs and the bot's.

Warnings never touch leveling state.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Optional

import discord
from discord import app_commands
from discord.ext import commands

from guildkeeper.constants import format_duration, parse_duration
from guildkeeper.database.engine import run_db
from guildkeeper.database.models import ModActionType
from guildkeeper.engine.guild_config import GuildConfig
from guildkeeper.services.embeds import (
    build_error_embed,
    build_mod_log_embed,
    build_success_embed,
    build_warning_dm_embed,
    build_warnings_list_embed,
)
from guildkeeper.services.moderation_actions import (
    MAX_TIMEOUT,
    ActionOutcome,
    ban_user,
    dm_member,
    enforce_warn_threshold,
    kick_member,
    post_mod_log,
    remove_timeout,
    timeout_member,
    unban_user,
)
from guildkeeper.services.moderation_service import (
    add_warning,
    clear_warnings,
    list_warnings,
)

if TYPE_CHECKING:
    from guildkeeper.bot.core import GuildKeeperBot

logger = logging.getLogger(__name__)

MAX_TEMPBAN = timedelta(days=365)

# Optional slash parameters are spelled Optional[Reason] so app_commands can unwrap the Range
Reason = app_commands.Range[str, 1, 500]


def target_error(
    guild: discord.Guild,
    moderator: discord.abc.User,
    target: discord.abc.User,
) -> str | None:
    """Why *moderator* may not act on *target*, or None if they may."""
    if target.id == moderator.id:
        return "You can't moderate yourself."
    if guild.me is not None and target.id == guild.me.id:
        return "I can't moderate myself."
    if target.id == guild.owner_id:
        return "The server owner can't be moderated."
    if not isinstance(target, discord.Member):
        return None
    if (
        isinstance(moderator, discord.Member)
        and moderator.id != guild.owner_id
        and target.top_role.position >= moderator.top_role.position
    ):
        return "You can't moderate a member whose top role is equal to or above yours."
    if guild.me is not None and target.top_role.position >= guild.me.top_role.position:
        return "My top role must be above theirs."
    return None


class Moderation(commands.Cog, name="Moderation"):
    """Member warnings and moderator actions."""

    warn = app_commands.Group(
        name="warn",
        description="Warning management commands",
        default_permissions=discord.Permissions(moderate_members=True),
        guild_only=True,
    )

    def __init__(self, bot: GuildKeeperBot) -> None:
        self.bot = bot

    async def _config(self, guild_id: int) -> GuildConfig:
        return await self.bot.get_guild_config(guild_id) or GuildConfig()

    async def _refuse(self, interaction: discord.Interaction, message: str) -> None:
        await interaction.response.send_message(embed=build_error_embed(message), ephemeral=True)

    async def _reply(
        self,
        interaction: discord.Interaction,
        outcome: ActionOutcome,
        reason: str | None,
    ) -> None:
        if not outcome.ok:
            await interaction.followup.send(embed=build_error_embed(outcome.note))
            return
        summary = outcome.note
        if reason:
            summary += f"\n**Reason:** {reason}"
        await interaction.followup.send(embed=build_success_embed(summary))

    def _resolve(self, guild: discord.Guild, user: discord.abc.User) -> discord.abc.User:
        if isinstance(user, discord.Member):
            return user
        return guild.get_member(user.id) or user

    # -------------------------------------------------------------------
    # /warn add
    # -------------------------------------------------------------------
    @warn.command(name="add", description="Warn a member.")
    @app_commands.describe(member="The member to warn", reason="Reason for the warning")
    async def warn_add(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        reason: Reason,
    ) -> None:
        guild = interaction.guild
        assert guild is not None
        if member.bot:
            await self._refuse(interaction, "Bots can't be warned.")
            return

        await interaction.response.defer()
        config = await self._config(guild.id)
        count = await run_db(
            add_warning, self.bot.engine, guild.id, member.id, interaction.user.id, reason,
        )

        if config.moderation.dm_on_action:
            await dm_member(member, build_warning_dm_embed(guild.name, reason, count))

        note = await enforce_warn_threshold(
            self.bot.engine, member, count, interaction.user, config,
        )

        summary = f"**{member}** has been warned.\n**Reason:** {reason}\n**Active warnings:** {count}"
        if note:
            summary += f"\n{note}"
        await interaction.followup.send(embed=build_success_embed(summary))

        await post_mod_log(
            guild, config,
            build_mod_log_embed(
                ModActionType.WARN, member.mention, interaction.user.mention, reason,
                extra=note,
            ),
        )

    # -------------------------------------------------------------------
    # /warn list
    # -------------------------------------------------------------------
    @warn.command(name="list", description="View a member's active warnings.")
    @app_commands.describe(member="The member to check")
    async def warn_list(self, interaction: discord.Interaction, member: discord.Member) -> None:
        rows = await run_db(list_warnings, self.bot.engine, interaction.guild_id, member.id)
        await interaction.response.send_message(
            embed=build_warnings_list_embed(member.display_name, rows), ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /warn clear
    # -------------------------------------------------------------------
    @warn.command(name="clear", description="Clear all of a member's warnings.")
    @app_commands.describe(member="The member to clear warnings for")
    async def warn_clear(self, interaction: discord.Interaction, member: discord.Member) -> None:
        guild = interaction.guild
        assert guild is not None
        cleared = await run_db(
            clear_warnings, self.bot.engine, guild.id, member.id, interaction.user.id,
        )
        await interaction.response.send_message(
            embed=build_success_embed(f"Cleared {cleared} warning(s) for **{member}**."),
        )

        config = await self._config(guild.id)
        await post_mod_log(
            guild, config,
            build_mod_log_embed(
                ModActionType.CLEAR_WARNINGS, member.mention, interaction.user.mention,
                f"Cleared {cleared} warning(s)",
            ),
        )

    # -------------------------------------------------------------------
    # /kick
    # -------------------------------------------------------------------
    @app_commands.command(name="kick", description="Kick a member from the server.")
    @app_commands.describe(member="The member to kick", reason="Reason for the kick")
    @app_commands.default_permissions(kick_members=True)
    @app_commands.guild_only()
    async def kick(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        reason: Optional[Reason] = None,
    ) -> None:
        guild = interaction.guild
        assert guild is not None
        error = target_error(guild, interaction.user, member)
        if error:
            await self._refuse(interaction, error)
            return

        await interaction.response.defer()
        config = await self._config(guild.id)
        outcome = await kick_member(self.bot.engine, member, interaction.user, reason, config)
        await self._reply(interaction, outcome, reason)

    # -------------------------------------------------------------------
    # /ban and /tempban
    # -------------------------------------------------------------------
    @app_commands.command(name="ban", description="Ban a user from the server.")
    @app_commands.describe(
        user="The user to ban",
        reason="Reason for the ban",
        delete_days="Days of their messages to delete (0-7)",
    )
    @app_commands.default_permissions(ban_members=True)
    @app_commands.guild_only()
    async def ban(
        self,
        interaction: discord.Interaction,
        user: discord.User,
        reason: Optional[Reason] = None,
        delete_days: app_commands.Range[int, 0, 7] = 0,
    ) -> None:
        await self._ban(interaction, user, reason, delete_days=delete_days)

    @app_commands.command(name="tempban", description="Ban a user for a limited time.")
    @app_commands.describe(
        user="The user to ban",
        duration="How long, e.g. 30m, 12h, 7d (max 365d)",
        reason="Reason for the ban",
    )
    @app_commands.default_permissions(ban_members=True)
    @app_commands.guild_only()
    async def tempban(
        self,
        interaction: discord.Interaction,
        user: discord.User,
        duration: str,
        reason: Optional[Reason] = None,
    ) -> None:
        delta = parse_duration(duration)
        if delta is None or delta <= timedelta(0):
            await self._refuse(interaction, "Invalid duration. Use a format like `30m`, `12h` or `7d`.")
            return
        if delta > MAX_TEMPBAN:
            await self._refuse(
                interaction, f"Temporary bans can last at most {format_duration(MAX_TEMPBAN)}.",
            )
            return
        await self._ban(interaction, user, reason, duration=delta)

    async def _ban(
        self,
        interaction: discord.Interaction,
        user: discord.abc.User,
        reason: str | None,
        *,
        duration: timedelta | None = None,
        delete_days: int = 0,
    ) -> None:
        guild = interaction.guild
        assert guild is not None
        target = self._resolve(guild, user)
        error = target_error(guild, interaction.user, target)
        if error:
            await self._refuse(interaction, error)
            return

        await interaction.response.defer()
        config = await self._config(guild.id)
        outcome = await ban_user(
            self.bot.engine, guild, target, interaction.user, reason, config,
            duration=duration, delete_message_days=delete_days,
        )
        await self._reply(interaction, outcome, reason)

    # -------------------------------------------------------------------
    # /unban
    # -------------------------------------------------------------------
    @app_commands.command(name="unban", description="Lift a ban.")
    @app_commands.describe(user_id="ID of the banned user", reason="Reason for the unban")
    @app_commands.default_permissions(ban_members=True)
    @app_commands.guild_only()
    async def unban(
        self,
        interaction: discord.Interaction,
        user_id: str,
        reason: Optional[Reason] = None,
    ) -> None:
        guild = interaction.guild
        assert guild is not None
        user_id = user_id.strip()
        if not user_id.isdigit():
            await self._refuse(interaction, "That isn't a valid user ID.")
            return

        await interaction.response.defer()
        config = await self._config(guild.id)
        outcome = await unban_user(
            self.bot.engine, guild, int(user_id), interaction.user, reason, config,
        )
        await self._reply(interaction, outcome, reason)

    # -------------------------------------------------------------------
    # /timeout and /untimeout
    # -------------------------------------------------------------------
    @app_commands.command(name="timeout", description="Time a member out.")
    @app_commands.describe(
        member="The member to time out",
        duration="How long, e.g. 10m, 2h, 1d (max 28d)",
        reason="Reason for the timeout",
    )
    @app_commands.default_permissions(moderate_members=True)
    @app_commands.guild_only()
    async def timeout(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        duration: str,
        reason: Optional[Reason] = None,
    ) -> None:
        guild = interaction.guild
        assert guild is not None
        delta = parse_duration(duration)
        if delta is None or delta <= timedelta(0):
            await self._refuse(interaction, "Invalid duration. Use a format like `10m`, `2h` or `1d`.")
            return
        if delta > MAX_TIMEOUT:
            await self._refuse(interaction, "Timeouts can last at most 28 days.")
            return
        error = target_error(guild, interaction.user, member)
        if error:
            await self._refuse(interaction, error)
            return

        await interaction.response.defer()
        config = await self._config(guild.id)
        outcome = await timeout_member(
            self.bot.engine, member, interaction.user, reason, delta, config,
        )
        await self._reply(interaction, outcome, reason)

    @app_commands.command(name="untimeout", description="Remove a member's timeout.")
    @app_commands.describe(member="The member to release", reason="Reason")
    @app_commands.default_permissions(moderate_members=True)
    @app_commands.guild_only()
    async def untimeout(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        reason: Optional[Reason] = None,
    ) -> None:
        guild = interaction.guild
        assert guild is not None
        if not member.is_timed_out():
            await self._refuse(interaction, f"**{member}** isn't timed out.")
            return

        await interaction.response.defer()
        config = await self._config(guild.id)
        outcome = await remove_timeout(self.bot.engine, member, interaction.user, reason, config)
        await self._reply(interaction, outcome, reason)


async def setup(bot: GuildKeeperBot) -> None:
    await bot.add_cog(Moderation(bot))
