"""
guildkeeper.bot.cogs.schedule — Scheduled Announcements
========================================================

``/schedule create | list | delete | toggle`` (Manage Server) plus the
one-minute polling loop that posts due messages.

Each due message is sent and marked independently; one deleted channel or
missing permission doesn't hold up the rest of the batch.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands, tasks

from guildkeeper.constants import COLOR_PRIMARY, format_duration, parse_duration, parse_hex_color
from guildkeeper.database.engine import run_db
from guildkeeper.database.models import ScheduledMessage
from guildkeeper.services.embeds import (
    build_error_embed,
    build_message_embed,
    build_schedule_list_embed,
    build_success_embed,
)
from guildkeeper.services.scheduler_service import (
    create_scheduled_message,
    delete_scheduled_message,
    get_due_messages,
    list_scheduled_messages,
    mark_ran,
    render_scheduled_message,
    toggle_scheduled_message,
)

if TYPE_CHECKING:
    from guildkeeper.bot.core import GuildKeeperBot

logger = logging.getLogger(__name__)


class Schedule(commands.Cog, name="Schedule"):
    """Posts admin-scheduled messages on time."""

    schedule = app_commands.Group(
        name="schedule",
        description="Schedule automated messages",
        default_permissions=discord.Permissions(manage_guild=True),
        guild_only=True,
    )

    def __init__(self, bot: GuildKeeperBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.dispatch_loop.start()

    async def cog_unload(self) -> None:
        self.dispatch_loop.cancel()

    # -------------------------------------------------------------------
    # Dispatch loop
    # -------------------------------------------------------------------
    @tasks.loop(minutes=1)
    async def dispatch_loop(self) -> None:
        try:
            due = await run_db(get_due_messages, self.bot.engine)
        except Exception:
            logger.exception("Failed to load due scheduled messages", extra={"task": "scheduler"})
            return

        for row in due:
            try:
                await self._dispatch(row)
            except Exception:
                logger.exception(
                    "Scheduled message %s failed", row.id,
                    extra={"task": "scheduler", "scheduled_id": row.id},
                )

    @dispatch_loop.before_loop
    async def _wait_dispatch(self) -> None:
        await self.bot.wait_until_ready()

    async def _dispatch(self, row: ScheduledMessage) -> None:
        now = datetime.now(UTC)
        guild = self.bot.get_guild(row.guild_id)
        channel = guild.get_channel(row.channel_id) if guild else None
        if guild is None or channel is None:
            # Bot left the guild or the channel is gone; consume the run so
            # a one-shot doesn't retry forever.
            logger.warning(
                "Scheduled message %s target unavailable (guild %s, channel %s)",
                row.id, row.guild_id, row.channel_id,
            )
            await run_db(mark_ran, self.bot.engine, row.id, now)
            return

        text = render_scheduled_message(
            row.message, server=guild.name, member_count=guild.member_count or 0, now=now,
        )
        if row.embed:
            await channel.send(
                embed=build_message_embed(text, parse_hex_color(row.embed_color, COLOR_PRIMARY)),
            )
        else:
            await channel.send(text)

        await run_db(mark_ran, self.bot.engine, row.id, now)
        logger.info("Executed scheduled message %s in guild %s", row.id, row.guild_id)

    # -------------------------------------------------------------------
    # /schedule create
    # -------------------------------------------------------------------
    @schedule.command(name="create", description="Create a scheduled message.")
    @app_commands.describe(
        channel="Channel to send the message in",
        message="Message to send (supports {server}, {memberCount}, {date}, {time})",
        interval="Repeat interval, e.g. 30m, 1h, 1d (leave empty for one-time)",
        start_in="Delay before the first run, e.g. 10m, 1h",
        embed="Send as an embed?",
        embed_color="Embed colour as hex, e.g. #5865F2",
    )
    async def schedule_create(
        self,
        interaction: discord.Interaction,
        channel: discord.TextChannel,
        message: app_commands.Range[str, 1, 2000],
        interval: str | None = None,
        start_in: str | None = None,
        embed: bool = False,
        embed_color: str | None = None,
    ) -> None:
        now = datetime.now(UTC)

        interval_minutes: int | None = None
        if interval:
            delta = parse_duration(interval)
            if delta is None:
                await interaction.response.send_message(
                    embed=build_error_embed("Invalid interval. Use formats like 10m, 1h, 1d."),
                    ephemeral=True,
                )
                return
            interval_minutes = int(delta.total_seconds() // 60)

        run_at: datetime | None = None
        if start_in:
            delay = parse_duration(start_in)
            if delay is None:
                await interaction.response.send_message(
                    embed=build_error_embed("Invalid start delay. Use formats like 10m, 1h."),
                    ephemeral=True,
                )
                return
            run_at = now + delay
        elif interval_minutes is None:
            run_at = now

        try:
            row = await run_db(
                create_scheduled_message,
                self.bot.engine,
                interaction.guild_id,
                channel.id,
                message,
                created_by=interaction.user.id,
                interval_minutes=interval_minutes,
                run_at=run_at,
                embed=embed,
                embed_color=embed_color,
                now=now,
            )
        except ValueError as exc:
            await interaction.response.send_message(embed=build_error_embed(str(exc)), ephemeral=True)
            return

        repeat = (
            f"every {format_duration(timedelta(minutes=interval_minutes))}"
            if interval_minutes else "one-time"
        )
        await interaction.response.send_message(
            embed=build_success_embed(
                f"Scheduled message **#{row.id}** in {channel.mention} ({repeat}).\n"
                f"First run {discord.utils.format_dt(row.next_run_at, 'R')}."
            ),
        )

    # -------------------------------------------------------------------
    # /schedule list | delete | toggle
    # -------------------------------------------------------------------
    @schedule.command(name="list", description="List this server's scheduled messages.")
    async def schedule_list(self, interaction: discord.Interaction) -> None:
        rows = await run_db(list_scheduled_messages, self.bot.engine, interaction.guild_id)
        await interaction.response.send_message(embed=build_schedule_list_embed(rows), ephemeral=True)

    @schedule.command(name="delete", description="Delete a scheduled message.")
    @app_commands.describe(id="ID of the scheduled message")
    async def schedule_delete(self, interaction: discord.Interaction, id: int) -> None:  # noqa: A002
        deleted = await run_db(delete_scheduled_message, self.bot.engine, interaction.guild_id, id)
        if not deleted:
            await interaction.response.send_message(
                embed=build_error_embed("Scheduled message not found."), ephemeral=True,
            )
            return
        await interaction.response.send_message(
            embed=build_success_embed(f"Scheduled message #{id} deleted."),
        )

    @schedule.command(name="toggle", description="Enable or disable a scheduled message.")
    @app_commands.describe(id="ID of the scheduled message")
    async def schedule_toggle(self, interaction: discord.Interaction, id: int) -> None:  # noqa: A002
        enabled = await run_db(toggle_scheduled_message, self.bot.engine, interaction.guild_id, id)
        if enabled is None:
            await interaction.response.send_message(
                embed=build_error_embed("Scheduled message not found."), ephemeral=True,
            )
            return
        state = "enabled" if enabled else "disabled"
        await interaction.response.send_message(
            embed=build_success_embed(f"Scheduled message #{id} {state}."),
        )


async def setup(bot: GuildKeeperBot) -> None:
    await bot.add_cog(Schedule(bot))
