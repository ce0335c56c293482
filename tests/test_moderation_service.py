"""
tests/test_moderation_service.py — Warnings & Audit Trail
==========================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from guildkeeper.database.models import ModAction, ModActionType, TempBan
from guildkeeper.engine.guild_config import WarnThresholds
from guildkeeper.services.moderation_service import (
    MAX_REASON_LENGTH,
    add_warning,
    cancel_temp_bans,
    clear_warnings,
    close_temp_ban,
    due_temp_bans,
    list_warnings,
    log_mod_action,
    record_temp_ban,
    threshold_action,
)

GUILD = 1000
MOD = 1
USER = 42


def actions(engine) -> list[ModActionType]:
    with Session(engine) as session:
        return list(session.scalars(select(ModAction.action).order_by(ModAction.id)).all())


class TestWarnings:
    def test_add_returns_active_count(self, db_engine):
        assert add_warning(db_engine, GUILD, USER, MOD, "spam") == 1
        assert add_warning(db_engine, GUILD, USER, MOD, "more spam") == 2
        assert add_warning(db_engine, GUILD, USER + 1, MOD, "other") == 1
        assert add_warning(db_engine, GUILD + 1, USER, MOD, "elsewhere") == 1

    def test_reason_truncated(self, db_engine):
        add_warning(db_engine, GUILD, USER, MOD, "x" * 600)
        [warning] = list_warnings(db_engine, GUILD, USER)
        assert len(warning.reason) == MAX_REASON_LENGTH

    def test_list_newest_first(self, db_engine):
        for reason in ("first", "second", "third"):
            add_warning(db_engine, GUILD, USER, MOD, reason)
        assert [w.reason for w in list_warnings(db_engine, GUILD, USER)] == [
            "third", "second", "first",
        ]

    def test_list_whole_guild_with_limit(self, db_engine):
        add_warning(db_engine, GUILD, USER, MOD, "a")
        add_warning(db_engine, GUILD, USER + 1, MOD, "b")
        add_warning(db_engine, GUILD + 1, USER, MOD, "c")
        assert {w.reason for w in list_warnings(db_engine, GUILD)} == {"a", "b"}
        assert len(list_warnings(db_engine, GUILD, limit=1)) == 1

    def test_clear_soft_deletes(self, db_engine):
        add_warning(db_engine, GUILD, USER, MOD, "a")
        add_warning(db_engine, GUILD, USER, MOD, "b")
        assert clear_warnings(db_engine, GUILD, USER, MOD) == 2
        assert list_warnings(db_engine, GUILD, USER) == []
        history = list_warnings(db_engine, GUILD, USER, include_inactive=True)
        assert len(history) == 2
        assert all(not w.active for w in history)
        # Counting restarts after a clear
        assert add_warning(db_engine, GUILD, USER, MOD, "c") == 1

    def test_clear_with_nothing_active(self, db_engine):
        assert clear_warnings(db_engine, GUILD, USER, MOD) == 0

    def test_audit_trail(self, db_engine):
        add_warning(db_engine, GUILD, USER, MOD, "a")
        clear_warnings(db_engine, GUILD, USER, MOD)
        log_mod_action(db_engine, GUILD, ModActionType.KICK, USER, MOD, "Reached 3 warnings")
        assert actions(db_engine) == [
            ModActionType.WARN, ModActionType.CLEAR_WARNINGS, ModActionType.KICK,
        ]


class TestThresholdAction:
    THRESHOLDS = WarnThresholds(kick=3, ban=5)

    @pytest.mark.parametrize(
        "count, expected",
        [
            (1, None),
            (2, None),
            (3, ModActionType.KICK),
            (4, ModActionType.KICK),
            (5, ModActionType.BAN),
            (9, ModActionType.BAN),
        ],
    )
    def test_thresholds(self, count, expected):
        assert threshold_action(count, self.THRESHOLDS) == expected

    def test_ban_wins_when_both_met(self):
        assert threshold_action(2, WarnThresholds(kick=2, ban=2)) == ModActionType.BAN


class TestAuditDuration:
    def test_timeout_records_seconds(self, db_engine):
        log_mod_action(
            db_engine, GUILD, ModActionType.TIMEOUT, USER, MOD, "flood", timedelta(minutes=10),
        )
        with Session(db_engine) as session:
            row = session.scalars(select(ModAction)).one()
        assert row.duration_seconds == 600

    def test_duration_optional(self, db_engine):
        log_mod_action(db_engine, GUILD, ModActionType.KICK, USER, MOD)
        with Session(db_engine) as session:
            assert session.scalars(select(ModAction)).one().duration_seconds is None


class TestTempBans:
    T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def _active(self, engine) -> list[TempBan]:
        with Session(engine) as session:
            return list(session.scalars(select(TempBan).where(TempBan.active.is_(True))).all())

    def test_record_returns_expiry_and_audits(self, db_engine):
        expires = record_temp_ban(
            db_engine, GUILD, USER, MOD, "raid", timedelta(days=1), now=self.T0,
        )
        assert expires == self.T0 + timedelta(days=1)
        assert actions(db_engine) == [ModActionType.TEMPBAN]
        with Session(db_engine) as session:
            assert session.scalars(select(ModAction)).one().duration_seconds == 86400

    def test_new_tempban_replaces_active_one(self, db_engine):
        record_temp_ban(db_engine, GUILD, USER, MOD, "a", timedelta(hours=1), now=self.T0)
        record_temp_ban(db_engine, GUILD, USER, MOD, "b", timedelta(days=3), now=self.T0)
        active = self._active(db_engine)
        assert len(active) == 1
        assert active[0].reason == "b"

    def test_due_only_after_expiry(self, db_engine):
        record_temp_ban(db_engine, GUILD, USER, MOD, None, timedelta(hours=1), now=self.T0)
        record_temp_ban(db_engine, GUILD, USER + 1, MOD, None, timedelta(hours=5), now=self.T0)

        assert due_temp_bans(db_engine, now=self.T0 + timedelta(minutes=59)) == []
        due = due_temp_bans(db_engine, now=self.T0 + timedelta(hours=2))
        assert [ban.user_id for ban in due] == [USER]

    def test_close_is_idempotent(self, db_engine):
        record_temp_ban(db_engine, GUILD, USER, MOD, None, timedelta(hours=1), now=self.T0)
        ban_id = self._active(db_engine)[0].id
        assert close_temp_ban(db_engine, ban_id) is True
        assert close_temp_ban(db_engine, ban_id) is False
        assert due_temp_bans(db_engine, now=self.T0 + timedelta(days=1)) == []

    def test_cancel_on_manual_unban(self, db_engine):
        record_temp_ban(db_engine, GUILD, USER, MOD, None, timedelta(hours=1), now=self.T0)
        record_temp_ban(db_engine, GUILD + 1, USER, MOD, None, timedelta(hours=1), now=self.T0)
        assert cancel_temp_bans(db_engine, GUILD, USER) == 1
        assert [ban.guild_id for ban in self._active(db_engine)] == [GUILD + 1]
