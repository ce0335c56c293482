"""
tests/test_moderation_actions.py — Kick, Ban, Tempban, Unban & Timeout
=======================================================================

The shared Discord-side actions, the moderator guards on the slash
commands, and the tempban expiry loop, all against mocked Discord objects.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from guildkeeper.bot.cogs.moderation import Moderation, target_error
from guildkeeper.bot.cogs.tasks import PeriodicTasks
from guildkeeper.database.models import ModAction, ModActionType, TempBan
from guildkeeper.engine.guild_config import GuildConfig
from guildkeeper.services.moderation_actions import (
    MAX_TIMEOUT,
    ban_user,
    kick_member,
    remove_timeout,
    timeout_member,
    unban_user,
)
from guildkeeper.services.moderation_service import due_temp_bans, record_temp_ban

GUILD = 1000
OWNER = 1
MOD = 2
USER = 42
BOT_ID = 999


def run_async(coro):
    return asyncio.run(coro)


def http_error(cls, status: int):
    return cls(MagicMock(status=status, reason="error"), "error")


def make_guild():
    guild = MagicMock()
    guild.id = GUILD
    guild.name = "Test Guild"
    guild.owner_id = OWNER
    guild.me.id = BOT_ID
    guild.me.mention = f"<@{BOT_ID}>"
    guild.me.top_role.position = 50
    guild.ban = AsyncMock()
    guild.unban = AsyncMock()
    guild.get_channel = MagicMock(return_value=None)
    guild.get_member = MagicMock(return_value=None)
    return guild


def make_member(guild, user_id: int = USER, *, top_role: int = 5):
    member = MagicMock(spec=discord.Member)
    member.id = user_id
    member.mention = f"<@{user_id}>"
    member.guild = guild
    member.top_role = SimpleNamespace(position=top_role)
    member.send = AsyncMock()
    member.kick = AsyncMock()
    member.timeout = AsyncMock()
    member.is_timed_out = MagicMock(return_value=True)
    member.__str__ = MagicMock(return_value=f"user{user_id}")
    return member


def audit(engine) -> list[ModAction]:
    with Session(engine) as session:
        return list(session.scalars(select(ModAction).order_by(ModAction.id)).all())


@pytest.fixture
def guild():
    return make_guild()


@pytest.fixture
def moderator(guild):
    return make_member(guild, MOD, top_role=20)


# ===========================================================================
# Actions
# ===========================================================================
class TestKick:
    def test_dm_then_kick_then_audit(self, db_engine, guild, moderator):
        member = make_member(guild)
        order = []
        member.send.side_effect = lambda **_: order.append("dm")
        member.kick.side_effect = lambda **_: order.append("kick")

        outcome = run_async(kick_member(db_engine, member, moderator, "rude", GuildConfig()))
        assert outcome.ok
        assert order == ["dm", "kick"]
        [row] = audit(db_engine)
        assert (row.action, row.target_id, row.moderator_id, row.reason) == (
            ModActionType.KICK, USER, MOD, "rude",
        )

    def test_no_dm_when_disabled(self, db_engine, guild, moderator):
        member = make_member(guild)
        config = GuildConfig.model_validate({"moderation": {"dmOnAction": False}})
        run_async(kick_member(db_engine, member, moderator, None, config))
        member.send.assert_not_awaited()

    def test_closed_dms_do_not_block(self, db_engine, guild, moderator):
        member = make_member(guild)
        member.send.side_effect = http_error(discord.Forbidden, 403)
        assert run_async(kick_member(db_engine, member, moderator, None, GuildConfig())).ok
        member.kick.assert_awaited_once()

    def test_http_failure_not_audited(self, db_engine, guild, moderator):
        member = make_member(guild)
        member.kick.side_effect = http_error(discord.HTTPException, 500)
        outcome = run_async(kick_member(db_engine, member, moderator, None, GuildConfig()))
        assert not outcome.ok
        assert "failed" in outcome.note
        assert audit(db_engine) == []

    def test_mod_log_posted(self, db_engine, guild, moderator):
        channel = MagicMock()
        channel.send = AsyncMock()
        guild.get_channel = MagicMock(return_value=channel)
        config = GuildConfig.model_validate({"moderation": {"modLogChannelId": "77"}})
        run_async(kick_member(db_engine, make_member(guild), moderator, "rude", config))
        guild.get_channel.assert_called_with(77)
        assert channel.send.await_args.kwargs["embed"].title == "Moderation: Kick"


class TestBan:
    def test_permanent_ban(self, db_engine, guild, moderator):
        member = make_member(guild)
        outcome = run_async(ban_user(
            db_engine, guild, member, moderator, "raid", GuildConfig(), delete_message_days=2,
        ))
        assert outcome.ok
        guild.ban.assert_awaited_once_with(member, reason="raid", delete_message_seconds=2 * 86400)
        assert [row.action for row in audit(db_engine)] == [ModActionType.BAN]

    def test_ban_non_member_skips_dm(self, db_engine, guild, moderator):
        user = MagicMock(spec=discord.User)
        user.id = USER
        user.mention = f"<@{USER}>"
        user.send = AsyncMock()
        run_async(ban_user(db_engine, guild, user, moderator, None, GuildConfig()))
        user.send.assert_not_awaited()
        guild.ban.assert_awaited_once()

    def test_tempban_records_expiry(self, db_engine, guild, moderator):
        member = make_member(guild)
        outcome = run_async(ban_user(
            db_engine, guild, member, moderator, "cool off", GuildConfig(),
            duration=timedelta(days=2),
        ))
        assert outcome.ok
        assert "until" in outcome.note
        [row] = audit(db_engine)
        assert (row.action, row.duration_seconds) == (ModActionType.TEMPBAN, 2 * 86400)
        later = datetime.now(UTC) + timedelta(days=3)
        assert [ban.user_id for ban in due_temp_bans(db_engine, now=later)] == [USER]

    def test_permanent_ban_replaces_tempban(self, db_engine, guild, moderator):
        member = make_member(guild)
        run_async(ban_user(
            db_engine, guild, member, moderator, None, GuildConfig(), duration=timedelta(hours=1),
        ))
        run_async(ban_user(db_engine, guild, member, moderator, None, GuildConfig()))
        later = datetime.now(UTC) + timedelta(days=1)
        assert due_temp_bans(db_engine, now=later) == []

    def test_forbidden(self, db_engine, guild, moderator):
        guild.ban.side_effect = http_error(discord.Forbidden, 403)
        outcome = run_async(ban_user(db_engine, guild, make_member(guild), moderator, None, GuildConfig()))
        assert not outcome.ok
        assert "permission" in outcome.note
        assert audit(db_engine) == []


class TestUnban:
    def test_unban_closes_tempban(self, db_engine, guild, moderator):
        record_temp_ban(db_engine, GUILD, USER, MOD, None, timedelta(hours=1))
        outcome = run_async(unban_user(db_engine, guild, USER, moderator, "appeal", GuildConfig()))
        assert outcome.ok
        assert guild.unban.await_args.args[0].id == USER
        assert due_temp_bans(db_engine, now=datetime.now(UTC) + timedelta(days=1)) == []
        assert audit(db_engine)[-1].action == ModActionType.UNBAN

    def test_not_banned(self, db_engine, guild, moderator):
        guild.unban.side_effect = http_error(discord.NotFound, 404)
        outcome = run_async(unban_user(db_engine, guild, USER, moderator, None, GuildConfig()))
        assert not outcome.ok
        assert "isn't banned" in outcome.note
        assert audit(db_engine) == []


class TestTimeout:
    def test_timeout_logs_duration(self, db_engine, guild, moderator):
        member = make_member(guild)
        outcome = run_async(timeout_member(
            db_engine, member, moderator, "calm down", timedelta(minutes=10), GuildConfig(),
        ))
        assert outcome.ok
        member.timeout.assert_awaited_once_with(timedelta(minutes=10), reason="calm down")
        [row] = audit(db_engine)
        assert (row.action, row.duration_seconds) == (ModActionType.TIMEOUT, 600)

    def test_timeout_capped_at_discord_maximum(self, db_engine, guild, moderator):
        member = make_member(guild)
        run_async(timeout_member(db_engine, member, moderator, None, timedelta(days=60), GuildConfig()))
        assert member.timeout.await_args.args[0] == MAX_TIMEOUT

    def test_remove_timeout(self, db_engine, guild, moderator):
        member = make_member(guild)
        assert run_async(remove_timeout(db_engine, member, moderator, None, GuildConfig())).ok
        member.timeout.assert_awaited_once_with(None, reason=None)
        assert audit(db_engine)[0].action == ModActionType.UNTIMEOUT


# ===========================================================================
# Command guards
# ===========================================================================
class TestTargetError:
    def test_self(self, guild, moderator):
        assert "yourself" in target_error(guild, moderator, moderator)

    def test_bot(self, guild, moderator):
        assert "myself" in target_error(guild, moderator, make_member(guild, BOT_ID))

    def test_owner(self, guild, moderator):
        assert "owner" in target_error(guild, moderator, make_member(guild, OWNER))

    def test_equal_or_higher_role(self, guild, moderator):
        assert "yours" in target_error(guild, moderator, make_member(guild, top_role=20))

    def test_owner_outranks_everyone(self, guild):
        owner = make_member(guild, OWNER, top_role=1)
        assert target_error(guild, owner, make_member(guild, top_role=10)) is None

    def test_above_bot(self, guild):
        owner = make_member(guild, OWNER, top_role=100)
        assert "My top role" in target_error(guild, owner, make_member(guild, top_role=60))

    def test_non_member_allowed(self, guild, moderator):
        user = MagicMock(spec=discord.User)
        user.id = USER
        assert target_error(guild, moderator, user) is None

    def test_lower_member_allowed(self, guild, moderator):
        assert target_error(guild, moderator, make_member(guild)) is None


def make_interaction(guild, user):
    interaction = MagicMock()
    interaction.guild = guild
    interaction.guild_id = guild.id
    interaction.user = user
    interaction.response.send_message = AsyncMock()
    interaction.response.defer = AsyncMock()
    interaction.followup.send = AsyncMock()
    return interaction


class TestCommands:
    @pytest.fixture
    def cog(self, db_engine):
        bot = SimpleNamespace(engine=db_engine, get_guild_config=AsyncMock(return_value=None))
        return Moderation(bot)

    def test_kick_refuses_higher_member(self, cog, guild, moderator, db_engine):
        target = make_member(guild, top_role=30)
        interaction = make_interaction(guild, moderator)
        run_async(cog.kick.callback(cog, interaction, target, None))
        assert interaction.response.send_message.await_args.kwargs["ephemeral"] is True
        target.kick.assert_not_awaited()
        assert audit(db_engine) == []

    def test_kick_success(self, cog, guild, moderator, db_engine):
        target = make_member(guild)
        interaction = make_interaction(guild, moderator)
        run_async(cog.kick.callback(cog, interaction, target, "spam"))
        target.kick.assert_awaited_once()
        embed = interaction.followup.send.await_args.kwargs["embed"]
        assert "spam" in embed.description

    @pytest.mark.parametrize("duration", ["soon", "0m", "366d"])
    def test_tempban_rejects_bad_duration(self, cog, guild, moderator, duration):
        interaction = make_interaction(guild, moderator)
        run_async(cog.tempban.callback(cog, interaction, make_member(guild), duration, None))
        interaction.response.send_message.assert_awaited_once()
        guild.ban.assert_not_awaited()

    def test_tempban_success(self, cog, guild, moderator, db_engine):
        interaction = make_interaction(guild, moderator)
        run_async(cog.tempban.callback(cog, interaction, make_member(guild), "7d", "cool off"))
        guild.ban.assert_awaited_once()
        assert [row.action for row in audit(db_engine)] == [ModActionType.TEMPBAN]

    def test_timeout_over_28_days_rejected(self, cog, guild, moderator):
        target = make_member(guild)
        interaction = make_interaction(guild, moderator)
        run_async(cog.timeout.callback(cog, interaction, target, "5w", None))
        target.timeout.assert_not_awaited()

    def test_unban_rejects_non_numeric_id(self, cog, guild, moderator):
        interaction = make_interaction(guild, moderator)
        run_async(cog.unban.callback(cog, interaction, "@someone", None))
        guild.unban.assert_not_awaited()

    def test_untimeout_requires_active_timeout(self, cog, guild, moderator):
        target = make_member(guild)
        target.is_timed_out.return_value = False
        interaction = make_interaction(guild, moderator)
        run_async(cog.untimeout.callback(cog, interaction, target, None))
        target.timeout.assert_not_awaited()


# ===========================================================================
# Tempban expiry loop
# ===========================================================================
class TestTempbanExpiry:
    def _tasks(self, db_engine, guilds: dict):
        bot = SimpleNamespace(
            engine=db_engine,
            get_guild=lambda gid: guilds.get(gid),
            get_guild_config=AsyncMock(return_value=None),
        )
        return PeriodicTasks(bot)

    def _expired(self, db_engine, user_id: int = USER, guild_id: int = GUILD):
        record_temp_ban(
            db_engine, guild_id, user_id, MOD, None, timedelta(minutes=5),
            now=datetime.now(UTC) - timedelta(hours=1),
        )

    def _active(self, db_engine) -> list[TempBan]:
        with Session(db_engine) as session:
            return list(session.scalars(select(TempBan).where(TempBan.active.is_(True))).all())

    def test_expired_ban_lifted_and_closed(self, db_engine, guild):
        self._expired(db_engine)
        closed = run_async(self._tasks(db_engine, {GUILD: guild}).lift_expired_bans())
        assert closed == 1
        guild.unban.assert_awaited_once()
        assert self._active(db_engine) == []
        unban = audit(db_engine)[-1]
        assert (unban.action, unban.moderator_id) == (ModActionType.UNBAN, BOT_ID)

    def test_pending_ban_left_alone(self, db_engine, guild):
        record_temp_ban(db_engine, GUILD, USER, MOD, None, timedelta(days=1))
        assert run_async(self._tasks(db_engine, {GUILD: guild}).lift_expired_bans()) == 0
        guild.unban.assert_not_awaited()

    def test_already_unbanned_is_closed(self, db_engine, guild):
        self._expired(db_engine)
        guild.unban.side_effect = http_error(discord.NotFound, 404)
        assert run_async(self._tasks(db_engine, {GUILD: guild}).lift_expired_bans()) == 1
        assert self._active(db_engine) == []

    def test_transient_error_retries_next_run(self, db_engine, guild):
        self._expired(db_engine)
        guild.unban.side_effect = http_error(discord.HTTPException, 503)
        assert run_async(self._tasks(db_engine, {GUILD: guild}).lift_expired_bans()) == 0
        assert len(self._active(db_engine)) == 1

    def test_left_guild_is_closed(self, db_engine):
        self._expired(db_engine)
        assert run_async(self._tasks(db_engine, {}).lift_expired_bans()) == 1
        assert self._active(db_engine) == []
