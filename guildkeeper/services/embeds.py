"""
guildkeeper.services.embeds — Discord embed builders
=====================================================

All embed construction lives here so services and cogs only need to
supply data — no layout concerns.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import discord

from guildkeeper.constants import (
    COLOR_ERROR,
    COLOR_PRIMARY,
    COLOR_SUCCESS,
    COLOR_WARNING,
    RANK_BADGES,
    format_duration,
    format_number,
    ordinal,
)
from guildkeeper.database.models import MemberWarning, ScheduledMessage
from guildkeeper.services.leveling_service import LeaderboardEntry, RankInfo


def build_level_up_embed(description: str, avatar_url: str | None) -> discord.Embed:
    """Level-up celebration with the already-rendered guild message."""
    embed = discord.Embed(
        title="\U0001f389 Level Up!",
        description=description,
        color=COLOR_SUCCESS,
        timestamp=datetime.now(UTC),
    )
    if avatar_url:
        embed.set_thumbnail(url=avatar_url)
    return embed


def build_rank_embed(
    display_name: str,
    avatar_url: str | None,
    info: RankInfo,
) -> discord.Embed:
    bar_len = 20
    filled = round(info.progress * bar_len)
    bar = "█" * filled + "░" * (bar_len - filled)

    embed = discord.Embed(
        title=f"{display_name}'s Rank",
        color=COLOR_PRIMARY,
    )
    embed.add_field(name="Rank", value=f"#{info.rank}", inline=True)
    embed.add_field(name="Level", value=str(info.level), inline=True)
    embed.add_field(name="Total XP", value=format_number(info.total_xp), inline=True)
    embed.add_field(
        name=f"Progress to level {info.level + 1}",
        value=f"`{bar}` {info.total_xp:,} / {info.xp_for_next:,} XP",
        inline=False,
    )
    embed.set_footer(text=f"{info.message_count:,} messages counted")
    if avatar_url:
        embed.set_thumbnail(url=avatar_url)
    return embed


def build_leaderboard_embed(
    guild_name: str,
    entries: Sequence[LeaderboardEntry],
    page: int,
    total: int,
    per_page: int,
) -> discord.Embed:
    embed = discord.Embed(title=f"\U0001f3c6 {guild_name} Leaderboard", color=COLOR_PRIMARY)
    if not entries:
        embed.description = "Nobody has earned XP yet."
        return embed

    lines = []
    for entry in entries:
        badge = RANK_BADGES[entry.rank - 1] if entry.rank <= len(RANK_BADGES) else f"**{entry.rank}.**"
        lines.append(
            f"{badge} <@{entry.user_id}> — Level {entry.level} "
            f"({format_number(entry.total_xp)} XP)"
        )
    embed.description = "\n".join(lines)
    pages = max(1, -(-total // per_page))
    embed.set_footer(text=f"Page {page}/{pages} • {total} ranked members")
    return embed


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------
def build_warning_dm_embed(guild_name: str, reason: str, count: int) -> discord.Embed:
    return discord.Embed(
        title=f"⚠️ You were warned in {guild_name}",
        description=f"**Reason:** {reason}\nThis is your {ordinal(count)} active warning.",
        color=COLOR_WARNING,
    )


_ACTION_VERBS = {
    "KICK": "kicked from",
    "BAN": "banned from",
    "TEMPBAN": "temporarily banned from",
    "TIMEOUT": "timed out in",
}


def build_action_dm_embed(
    guild_name: str,
    action: str,
    reason: str | None,
    duration: timedelta | None = None,
) -> discord.Embed:
    """DM sent to a member before a kick, ban or timeout takes effect."""
    verb = _ACTION_VERBS.get(action, "actioned in")
    embed = discord.Embed(
        title=f"You were {verb} {guild_name}",
        description=f"**Reason:** {reason or 'No reason given'}",
        color=COLOR_ERROR if action != "TIMEOUT" else COLOR_WARNING,
    )
    if duration is not None:
        embed.add_field(name="Duration", value=format_duration(duration), inline=True)
    return embed


def build_mod_log_embed(
    action: str,
    target: str,
    moderator: str,
    reason: str | None,
    *,
    extra: str | None = None,
    duration: timedelta | None = None,
) -> discord.Embed:
    color = COLOR_ERROR if action in ("BAN", "KICK", "TEMPBAN") else COLOR_WARNING
    embed = discord.Embed(
        title=f"Moderation: {action.replace('_', ' ').title()}",
        color=color,
        timestamp=datetime.now(UTC),
    )
    embed.add_field(name="Member", value=target, inline=True)
    embed.add_field(name="Moderator", value=moderator, inline=True)
    if duration is not None:
        embed.add_field(name="Duration", value=format_duration(duration), inline=True)
    embed.add_field(name="Reason", value=reason or "No reason given", inline=False)
    if extra:
        embed.add_field(name="Note", value=extra, inline=False)
    return embed


def build_automod_log_embed(
    member: str,
    channel: str,
    action: str,
    reason: str,
    content: str,
) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f916 AutoMod Action",
        color=COLOR_WARNING,
        timestamp=datetime.now(UTC),
    )
    embed.add_field(name="Member", value=member, inline=True)
    embed.add_field(name="Channel", value=channel, inline=True)
    embed.add_field(name="Action", value=action, inline=True)
    embed.add_field(name="Reason", value=reason, inline=False)
    embed.add_field(name="Message Content", value=content[:1000] or "N/A", inline=False)
    return embed


def build_warnings_list_embed(
    display_name: str,
    warnings: Sequence[MemberWarning],
) -> discord.Embed:
    embed = discord.Embed(title=f"Warnings for {display_name}", color=COLOR_WARNING)
    if not warnings:
        embed.description = "No active warnings."
        return embed
    for w in warnings[:25]:
        when = w.created_at.strftime("%Y-%m-%d") if w.created_at else "unknown"
        embed.add_field(
            name=f"#{w.id} • {when}",
            value=f"{w.reason}\nby <@{w.moderator_id}>",
            inline=False,
        )
    return embed


# ---------------------------------------------------------------------------
# Welcome / scheduled
# ---------------------------------------------------------------------------
def build_message_embed(description: str, color: int, *, timestamp: bool = True) -> discord.Embed:
    """Plain description-only embed used by welcome and scheduled messages."""
    embed = discord.Embed(description=description, color=color)
    if timestamp:
        embed.timestamp = datetime.now(UTC)
    return embed


def build_schedule_list_embed(rows: Sequence[ScheduledMessage]) -> discord.Embed:
    embed = discord.Embed(title="\U0001f4c5 Scheduled Messages", color=COLOR_PRIMARY)
    if not rows:
        embed.description = "No scheduled messages."
        return embed
    for row in rows[:25]:
        if row.interval_minutes:
            cadence = "every " + format_duration_minutes(row.interval_minutes)
        else:
            cadence = "once"
        state = "✅" if row.enabled else "⏸️"
        preview = row.message if len(row.message) <= 80 else row.message[:77] + "..."
        embed.add_field(
            name=f"{state} #{row.id} • <#{row.channel_id}> • {cadence}",
            value=f"Next: {discord.utils.format_dt(_as_utc(row.next_run_at), 'R')}\n{preview}",
            inline=False,
        )
    return embed


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def format_duration_minutes(minutes: int) -> str:
    return format_duration(timedelta(minutes=minutes))


def build_error_embed(message: str) -> discord.Embed:
    return discord.Embed(description=f"❌ {message}", color=COLOR_ERROR)


def build_success_embed(message: str) -> discord.Embed:
    return discord.Embed(description=f"✅ {message}", color=COLOR_SUCCESS)
