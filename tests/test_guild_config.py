"""
tests/test_guild_config.py — Guild Configuration Parsing & Storage
===================================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from guildkeeper.database.engine import get_session
from guildkeeper.database.models import GuildSettings
from guildkeeper.engine.guild_config import (
    GuildConfig,
    GuildConfigError,
    deep_merge,
    dump_guild_config,
    parse_guild_config,
)
from guildkeeper.services import guild_config_service

GUILD = 1000


class TestParse:
    @pytest.mark.parametrize("raw", [None, "", "{}", {}])
    def test_empty_yields_defaults(self, raw):
        config = parse_guild_config(raw)
        assert config == GuildConfig()
        assert config.leveling.xp_range == (15, 25)
        assert config.leveling.xp_cooldown == 60
        assert config.leveling.level_up_channel == "current"
        assert config.modules.welcome is False

    def test_camel_case_document(self):
        config = parse_guild_config({
            "modules": {"leveling": True},
            "leveling": {
                "xpPerMessage": {"min": 5, "max": 10},
                "xpCooldown": 30,
                "levelUpChannel": "123456789012345678",
                "roleRewards": [{"level": 5, "roleId": "111", "removeOnHigherLevel": True}],
                "xpMultipliers": [{"roleId": "222", "multiplier": 1.5}],
            },
            "moderation": {"warnThresholds": {"kick": 2, "ban": 4}},
        })
        assert config.leveling.xp_range == (5, 10)
        assert config.leveling.role_rewards[0].role_id == 111
        assert config.leveling.role_rewards[0].remove_on_higher_level is True
        assert config.leveling.xp_multipliers[0].multiplier == 1.5
        assert config.moderation.warn_thresholds.ban == 4

    def test_unknown_keys_ignored(self):
        config = parse_guild_config({"leveling": {"somethingNew": 1}, "futureModule": {}})
        assert config.leveling.enabled is True

    def test_null_level_up_channel_means_current(self):
        assert parse_guild_config({"leveling": {"levelUpChannel": None}}).leveling.level_up_channel == "current"

    @pytest.mark.parametrize(
        "doc",
        [
            {"leveling": {"xpPerMessage": {"min": 30, "max": 10}}},
            {"leveling": {"xpPerMessage": {"min": 0, "max": 101}}},
            {"leveling": {"xpCooldown": 301}},
            {"leveling": {"levelUpChannel": "#general"}},
            {"leveling": {"levelUpMessage": ""}},
            {"leveling": {"roleRewards": [{"level": 0, "roleId": "1"}]}},
            {"leveling": {"xpMultipliers": [{"roleId": "1", "multiplier": 20}]}},
            {"moderation": {"warnThresholds": {"kick": 0}}},
        ],
    )
    def test_invalid_documents(self, doc):
        with pytest.raises(GuildConfigError) as exc_info:
            parse_guild_config(doc)
        assert exc_info.value.errors

    def test_too_many_role_rewards(self):
        rewards = [{"level": i + 1, "roleId": str(i + 1)} for i in range(26)]
        with pytest.raises(GuildConfigError):
            parse_guild_config({"leveling": {"roleRewards": rewards}})

    def test_bad_json(self):
        with pytest.raises(GuildConfigError):
            parse_guild_config("{not json")

    def test_non_object(self):
        with pytest.raises(GuildConfigError):
            parse_guild_config("[1, 2]")

    def test_error_is_value_error(self):
        assert issubclass(GuildConfigError, ValueError)


class TestDump:
    def test_snowflakes_serialize_as_strings(self):
        config = parse_guild_config({
            "leveling": {"ignoredChannels": [123456789012345678]},
            "moderation": {"modLogChannelId": 987654321098765432},
        })
        dumped = dump_guild_config(config)
        assert dumped["leveling"]["ignoredChannels"] == ["123456789012345678"]
        assert dumped["moderation"]["modLogChannelId"] == "987654321098765432"
        assert "xpPerMessage" in dumped["leveling"]

    def test_dump_parses_back(self):
        config = parse_guild_config({"welcome": {"enabled": True, "autoRole": ["5"]}})
        assert parse_guild_config(dump_guild_config(config)) == config


class TestDeepMerge:
    def test_nested_merge(self):
        base = {"leveling": {"enabled": True, "xpCooldown": 60}, "modules": {"welcome": False}}
        merged = deep_merge(base, {"leveling": {"xpCooldown": 10}})
        assert merged == {"leveling": {"enabled": True, "xpCooldown": 10}, "modules": {"welcome": False}}
        assert base["leveling"]["xpCooldown"] == 60

    def test_lists_replace(self):
        merged = deep_merge({"a": {"l": [1, 2]}}, {"a": {"l": [3]}})
        assert merged == {"a": {"l": [3]}}


class TestConfigService:
    def test_missing_guild(self, db_engine):
        assert guild_config_service.get_config(db_engine, GUILD) is None
        assert guild_config_service.get_raw_config(db_engine, GUILD) is None

    def test_update_creates_and_merges(self, db_engine):
        guild_config_service.update_config(db_engine, GUILD, {"leveling": {"xpCooldown": 10}})
        config = guild_config_service.update_config(
            db_engine, GUILD, {"leveling": {"levelUpChannel": "dm"}},
        )
        assert config.leveling.xp_cooldown == 10
        assert config.leveling.level_up_channel == "dm"

    def test_update_preserves_unmodelled_keys(self, db_engine):
        guild_config_service.update_config(db_engine, GUILD, {"dashboardTheme": {"accent": "red"}})
        raw = guild_config_service.get_raw_config(db_engine, GUILD)
        assert raw["dashboardTheme"] == {"accent": "red"}

    def test_invalid_update_writes_nothing(self, db_engine):
        guild_config_service.update_config(db_engine, GUILD, {"leveling": {"xpCooldown": 10}})
        with pytest.raises(GuildConfigError):
            guild_config_service.update_config(db_engine, GUILD, {"leveling": {"xpCooldown": 999}})
        raw = guild_config_service.get_raw_config(db_engine, GUILD)
        assert raw["leveling"]["xpCooldown"] == 10

    def test_snake_case_keys_rejected_without_writing(self, db_engine):
        guild_config_service.update_config(db_engine, GUILD, {"leveling": {"xpCooldown": 60}})
        with pytest.raises(GuildConfigError) as excinfo:
            guild_config_service.update_config(db_engine, GUILD, {"leveling": {"xp_cooldown": 10}})
        assert excinfo.value.errors[0]["loc"] == ("leveling", "xp_cooldown")
        raw = guild_config_service.get_raw_config(db_engine, GUILD)
        assert raw == {"leveling": {"xpCooldown": 60}}

    def test_snake_case_keys_inside_lists_rejected(self, db_engine):
        patch = {"leveling": {"roleRewards": [{"level": 5, "role_id": "9"}]}}
        with pytest.raises(GuildConfigError) as excinfo:
            guild_config_service.update_config(db_engine, GUILD, patch)
        assert excinfo.value.errors[0]["loc"] == ("leveling", "roleRewards", 0, "role_id")
        assert guild_config_service.get_raw_config(db_engine, GUILD) is None

    def test_unparseable_document(self, db_engine):
        with Session(db_engine) as session:
            session.add(GuildSettings(guild_id=GUILD, config_json="{not json"))
            session.commit()
        with pytest.raises(GuildConfigError):
            guild_config_service.get_config(db_engine, GUILD)

        config = guild_config_service.update_config(db_engine, GUILD, {"modules": {"welcome": True}})
        assert config.modules.welcome is True
        assert guild_config_service.get_raw_config(db_engine, GUILD) == {"modules": {"welcome": True}}

    def test_row_created_by_another_writer_is_merged(self, db_engine):
        # The guild was unconfigured when this writer began; a concurrent
        # writer's row must be reused, not collide on the primary key
        with Session(db_engine) as session:
            session.add(GuildSettings(guild_id=GUILD, config_json='{"modules": {"welcome": true}}'))
            session.commit()
        with get_session(db_engine) as session:
            row = guild_config_service._lock_settings_row(session, GUILD)
            assert row.config_json == '{"modules": {"welcome": true}}'

        config = guild_config_service.update_config(db_engine, GUILD, {"leveling": {"xpCooldown": 7}})
        assert config.modules.welcome is True
        assert config.leveling.xp_cooldown == 7

    def test_first_invalid_update_leaves_guild_unconfigured(self, db_engine):
        with pytest.raises(GuildConfigError):
            guild_config_service.update_config(db_engine, GUILD, {"leveling": {"xpCooldown": 999}})
        assert guild_config_service.get_raw_config(db_engine, GUILD) is None

    def test_initialize_is_idempotent(self, db_engine):
        first = guild_config_service.initialize_config(db_engine, GUILD)
        guild_config_service.update_config(db_engine, GUILD, {"leveling": {"xpCooldown": 5}})
        again = guild_config_service.initialize_config(db_engine, GUILD)
        assert first == GuildConfig()
        assert again.leveling.xp_cooldown == 5
