"""
tests/test_cogs.py — Cog Handlers with Mocked Discord Objects
==============================================================

Exercises the message XP listener, the welcome/leave listeners and the
warning threshold enforcement without a gateway connection.
Auto-moderation gating of XP is covered here; the filters and moderator
commands have their own modules.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest
from sqlalchemy.orm import Session

from guildkeeper.bot.cogs.leveling import Leveling
from guildkeeper.bot.cogs.membership import Membership
from guildkeeper.database.models import GuildMember, ModAction, ModActionType
from guildkeeper.engine.cooldown import CooldownGate
from guildkeeper.engine.guild_config import GuildConfig
from guildkeeper.services.automod_service import AutoModerator
from guildkeeper.services.leveling_service import get_member
from guildkeeper.services.moderation_actions import enforce_warn_threshold

GUILD = 1000
USER = 42
CHANNEL = 7


def run_async(coro):
    """Run a coroutine to completion (no pytest-asyncio needed)."""
    return asyncio.run(coro)


def make_bot(engine, config: GuildConfig | None):
    return SimpleNamespace(
        engine=engine,
        cooldown_gate=CooldownGate(engine),
        automod=AutoModerator(engine),
        get_guild_config=AsyncMock(return_value=config),
    )


def make_member(*, bot: bool = False, channels=None):
    guild = MagicMock()
    guild.id = GUILD
    guild.name = "Test Guild"
    guild.member_count = 12
    guild.get_channel = MagicMock(side_effect=lambda cid: (channels or {}).get(cid))
    guild.ban = AsyncMock()
    guild.unban = AsyncMock()
    guild.me.id = 999
    guild.me.mention = "<@999>"

    member = MagicMock(spec=discord.Member)
    member.id = USER
    member.bot = bot
    member.name = "alice"
    member.display_name = "Alice"
    member.mention = "<@42>"
    member.guild = guild
    member.roles = []
    member.add_roles = AsyncMock()
    member.send = AsyncMock()
    member.kick = AsyncMock()
    member.timeout = AsyncMock()
    return member


def make_message(member):
    message = MagicMock()
    message.id = 1
    message.author = member
    message.content = "hello there"
    message.delete = AsyncMock()
    message.guild = member.guild
    message.channel = MagicMock()
    message.channel.id = CHANNEL
    message.channel.send = AsyncMock()
    return message


def make_channel():
    channel = MagicMock()
    channel.send = AsyncMock()
    return channel


# ===========================================================================
# Message XP listener
# ===========================================================================
class TestLevelingListener:
    def test_awards_xp(self, db_engine):
        cog = Leveling(make_bot(db_engine, GuildConfig()))
        run_async(cog.on_message(make_message(make_member())))
        member = get_member(db_engine, GUILD, USER)
        assert 15 <= member.total_xp <= 25

    def test_bot_author_ignored(self, db_engine):
        bot = make_bot(db_engine, GuildConfig())
        cog = Leveling(bot)
        run_async(cog.on_message(make_message(make_member(bot=True))))
        bot.get_guild_config.assert_not_awaited()
        assert get_member(db_engine, GUILD, USER) is None

    def test_dm_ignored(self, db_engine):
        cog = Leveling(make_bot(db_engine, GuildConfig()))
        message = make_message(make_member())
        message.guild = None
        run_async(cog.on_message(message))
        assert get_member(db_engine, GUILD, USER) is None

    def test_unconfigured_guild_ignored(self, db_engine):
        cog = Leveling(make_bot(db_engine, None))
        run_async(cog.on_message(make_message(make_member())))
        assert get_member(db_engine, GUILD, USER) is None

    def test_level_up_triggers_reaction(self, db_engine):
        with Session(db_engine) as session:
            session.add(GuildMember(guild_id=GUILD, user_id=USER, xp=99, total_xp=99, level=0))
            session.commit()

        config = GuildConfig()
        cog = Leveling(make_bot(db_engine, config))
        message = make_message(make_member())
        with patch("guildkeeper.bot.cogs.leveling.on_level_up", new=AsyncMock()) as reaction:
            run_async(cog.on_message(message))
        reaction.assert_awaited_once()
        args, kwargs = reaction.await_args
        assert args[1] == 1
        assert kwargs["source_channel"] is message.channel

    def test_errors_are_contained(self, db_engine):
        bot = make_bot(db_engine, GuildConfig())
        bot.get_guild_config.side_effect = RuntimeError("cache exploded")
        run_async(Leveling(bot).on_message(make_message(make_member())))

    def test_automod_hit_earns_no_xp(self, db_engine):
        config = GuildConfig.model_validate({
            "modules": {"automod": True},
            "automod": {"enabled": True, "wordFilter": {"enabled": True, "words": ["hello"]}},
        })
        message = make_message(make_member())
        run_async(Leveling(make_bot(db_engine, config)).on_message(message))
        message.delete.assert_awaited_once()
        assert get_member(db_engine, GUILD, USER) is None

    def test_clean_message_still_earns_xp_with_automod_on(self, db_engine):
        config = GuildConfig.model_validate({
            "modules": {"automod": True},
            "automod": {"enabled": True, "wordFilter": {"enabled": True, "words": ["forbidden"]}},
        })
        message = make_message(make_member())
        run_async(Leveling(make_bot(db_engine, config)).on_message(message))
        message.delete.assert_not_awaited()
        assert get_member(db_engine, GUILD, USER) is not None


# ===========================================================================
# Welcome / leave
# ===========================================================================
WELCOME_CONFIG = GuildConfig.model_validate({
    "modules": {"welcome": True},
    "welcome": {
        "enabled": True,
        "channelId": "500",
        "message": "Hi {user}, welcome to {server} (#{memberCount})",
        "autoRole": ["900", "901"],
        "dmEnabled": True,
        "dmMessage": "Read the rules, {username}!",
        "leaveEnabled": True,
        "leaveMessage": "{username} left",
    },
})


class TestMembershipListener:
    def test_join_sends_welcome_roles_and_dm(self):
        channel = make_channel()
        member = make_member(channels={500: channel})
        cog = Membership(make_bot(None, WELCOME_CONFIG))
        run_async(cog.on_member_join(member))

        channel.send.assert_awaited_once_with("Hi <@42>, welcome to Test Guild (#12)")
        assert member.add_roles.await_count == 2
        member.send.assert_awaited_once_with("Read the rules, alice!")

    def test_auto_role_failure_does_not_block_welcome(self):
        channel = make_channel()
        member = make_member(channels={500: channel})
        member.add_roles.side_effect = [RuntimeError("hierarchy"), None]
        run_async(Membership(make_bot(None, WELCOME_CONFIG)).on_member_join(member))
        assert member.add_roles.await_count == 2
        channel.send.assert_awaited_once()

    def test_welcome_module_off(self):
        channel = make_channel()
        member = make_member(channels={500: channel})
        config = GuildConfig.model_validate({"welcome": {"enabled": True, "channelId": "500"}})
        run_async(Membership(make_bot(None, config)).on_member_join(member))
        channel.send.assert_not_awaited()

    def test_leave_message(self):
        channel = make_channel()
        member = make_member(channels={500: channel})
        run_async(Membership(make_bot(None, WELCOME_CONFIG)).on_member_remove(member))
        channel.send.assert_awaited_once_with("alice left")


# ===========================================================================
# Warning thresholds
# ===========================================================================
class TestWarnThresholds:
    @pytest.fixture
    def moderator(self):
        moderator = MagicMock()
        moderator.id = 1
        moderator.mention = "<@1>"
        return moderator

    def _audit(self, engine) -> list[ModActionType]:
        with Session(engine) as session:
            return [row.action for row in session.query(ModAction).all()]

    def test_below_threshold(self, db_engine, moderator):
        member = make_member()
        note = run_async(enforce_warn_threshold(db_engine, member, 2, moderator, GuildConfig()))
        assert note is None
        member.kick.assert_not_awaited()
        member.guild.ban.assert_not_awaited()

    def test_kick_threshold(self, db_engine, moderator):
        member = make_member()
        note = run_async(enforce_warn_threshold(db_engine, member, 3, moderator, GuildConfig()))
        member.kick.assert_awaited_once()
        member.guild.ban.assert_not_awaited()
        assert "kicked" in note
        assert self._audit(db_engine) == [ModActionType.KICK]

    def test_ban_wins(self, db_engine, moderator):
        member = make_member()
        config = GuildConfig.model_validate({"moderation": {"warnThresholds": {"kick": 2, "ban": 2}}})
        run_async(enforce_warn_threshold(db_engine, member, 2, moderator, config))
        member.guild.ban.assert_awaited_once()
        member.kick.assert_not_awaited()
        assert self._audit(db_engine) == [ModActionType.BAN]

    def test_missing_permission_reported(self, db_engine, moderator):
        member = make_member()
        member.kick.side_effect = discord.Forbidden(
            MagicMock(status=403, reason="Forbidden"), "Missing Permissions",
        )
        note = run_async(enforce_warn_threshold(db_engine, member, 3, moderator, GuildConfig()))
        assert "permission" in note
        assert self._audit(db_engine) == []
