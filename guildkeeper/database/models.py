"""
guildkeeper.database.models — SQLAlchemy 2.0 Data Models
=========================================================

Tables:
- guild_settings         — Per-guild configuration document (JSON text)
- guild_members          — Per-(guild, user) XP progress
- xp_cooldowns           — Self-expiring XP cooldown markers
- warnings               — Moderator-issued warnings (soft-cleared)
- mod_actions            — Append-only moderation audit trail
- temp_bans              — Bans the bot lifts when they expire
- scheduled_messages     — Recurring / one-shot channel announcements
- api_rate_limit_events  — Durable mutation events for dashboard throttling
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all GuildKeeper ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ModActionType(enum.StrEnum):
    """Categories of moderation actions recorded in mod_actions."""
    WARN = "WARN"
    CLEAR_WARNINGS = "CLEAR_WARNINGS"
    KICK = "KICK"
    BAN = "BAN"
    TEMPBAN = "TEMPBAN"
    UNBAN = "UNBAN"
    TIMEOUT = "TIMEOUT"
    UNTIMEOUT = "UNTIMEOUT"
    AUTOMOD_DELETE = "AUTOMOD_DELETE"


# ---------------------------------------------------------------------------
# GuildSettings: one configuration document per guild
# ---------------------------------------------------------------------------
class GuildSettings(Base):
    """Raw per-guild configuration.

    The dashboard writes the whole document; the bot only ever reads it
    through :class:`~guildkeeper.engine.cache.GuildConfigCache`, which
    validates it into a :class:`~guildkeeper.engine.guild_config.GuildConfig`.
    """
    __tablename__ = "guild_settings"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    config_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<GuildSettings guild={self.guild_id}>"


# ---------------------------------------------------------------------------
# GuildMember: XP progress, one row per (guild, user)
# ---------------------------------------------------------------------------
class GuildMember(Base):
    """Leveling progress for one member of one guild.

    ``xp`` and ``total_xp`` are only ever changed by a single atomic
    ``UPDATE … SET x = x + delta``; ``level`` only ever increases.
    """
    __tablename__ = "guild_members"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_xp_gain_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_guild_members_guild_total_xp", "guild_id", "total_xp"),
    )

    def __repr__(self) -> str:
        return (
            f"<GuildMember guild={self.guild_id} user={self.user_id} "
            f"total_xp={self.total_xp} lvl={self.level}>"
        )


# ---------------------------------------------------------------------------
# XpCooldown: "set if absent with TTL" markers
# ---------------------------------------------------------------------------
class XpCooldown(Base):
    __tablename__ = "xp_cooldowns"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_xp_cooldowns_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<XpCooldown guild={self.guild_id} user={self.user_id} until={self.expires_at}>"


# ---------------------------------------------------------------------------
# MemberWarning: moderator warnings
# ---------------------------------------------------------------------------
class MemberWarning(Base):
    __tablename__ = "warnings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    moderator_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_warnings_guild_user_active", "guild_id", "user_id", "active"),
    )

    def __repr__(self) -> str:
        return f"<MemberWarning id={self.id} user={self.user_id} active={self.active}>"


# ---------------------------------------------------------------------------
# ModAction: append-only moderation audit trail
# ---------------------------------------------------------------------------
class ModAction(Base):
    __tablename__ = "mod_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action: Mapped[ModActionType] = mapped_column(Enum(ModActionType), nullable=False)
    target_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    moderator_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), default=None)
    # Length of a timeout or temporary ban
    duration_seconds: Mapped[int | None] = mapped_column(Integer, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_mod_actions_guild_time", "guild_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ModAction id={self.id} {self.action} target={self.target_id}>"


# ---------------------------------------------------------------------------
# TempBan: bans the bot lifts when they expire
# ---------------------------------------------------------------------------
class TempBan(Base):
    """A ban with an expiry.

    ``active`` goes False when the ban is lifted, whether by the expiry loop,
    a manual ``/unban`` or a newer tempban replacing it.
    """
    __tablename__ = "temp_bans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    moderator_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), default=None)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_temp_bans_due", "active", "expires_at"),
        Index("ix_temp_bans_guild_user", "guild_id", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<TempBan id={self.id} guild={self.guild_id} user={self.user_id} "
            f"until={self.expires_at} active={self.active}>"
        )


# ---------------------------------------------------------------------------
# ScheduledMessage: announcements posted by the scheduler loop
# ---------------------------------------------------------------------------
class ScheduledMessage(Base):
    """A message posted to ``channel_id`` at ``next_run_at``.

    ``interval_minutes`` set → repeats; ``None`` → one-shot, disabled after
    it has been sent.
    """
    __tablename__ = "scheduled_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    embed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    embed_color: Mapped[str | None] = mapped_column(String(7), default=None)
    interval_minutes: Mapped[int | None] = mapped_column(Integer, default=None)
    next_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_scheduled_messages_due", "enabled", "next_run_at"),
        Index("ix_scheduled_messages_guild", "guild_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduledMessage id={self.id} channel={self.channel_id} "
            f"next={self.next_run_at} enabled={self.enabled}>"
        )


# ---------------------------------------------------------------------------
# ApiRateLimitEvent: one accepted dashboard write, charged to a bucket
# ---------------------------------------------------------------------------
class ApiRateLimitEvent(Base):
    """One row per bucket per accepted config write.

    ``bucket`` is ``"user:<sub>"`` or ``"guild:<id>"``; see
    :mod:`guildkeeper.api.rate_limit`.
    """
    __tablename__ = "api_rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    bucket: Mapped[str] = mapped_column(String(96), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_api_rate_limit_bucket_ts", "bucket", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<ApiRateLimitEvent bucket={self.bucket!r} ts={self.timestamp}>"
