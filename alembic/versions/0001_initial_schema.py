"""Initial schema: guild config, leveling, moderation, scheduler, API throttling

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_mod_action_type = sa.Enum("WARN", "CLEAR_WARNINGS", "KICK", "BAN", name="modactiontype")


def upgrade() -> None:
    op.create_table(
        "guild_settings",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("config_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "guild_members",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), primary_key=True),
        sa.Column("xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_xp_gain_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_guild_members_guild_total_xp", "guild_members", ["guild_id", "total_xp"],
    )

    op.create_table(
        "xp_cooldowns",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), primary_key=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_xp_cooldowns_expires_at", "xp_cooldowns", ["expires_at"])

    op.create_table(
        "warnings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("moderator_id", sa.BigInteger(), nullable=False),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_warnings_guild_user_active", "warnings", ["guild_id", "user_id", "active"],
    )

    op.create_table(
        "mod_actions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("action", _mod_action_type, nullable=False),
        sa.Column("target_id", sa.BigInteger(), nullable=False),
        sa.Column("moderator_id", sa.BigInteger(), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_mod_actions_guild_time", "mod_actions", ["guild_id", "created_at"])

    op.create_table(
        "scheduled_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("channel_id", sa.BigInteger(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("embed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("embed_color", sa.String(7), nullable=True),
        sa.Column("interval_minutes", sa.Integer(), nullable=True),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_scheduled_messages_due", "scheduled_messages", ["enabled", "next_run_at"],
    )
    op.create_index("ix_scheduled_messages_guild", "scheduled_messages", ["guild_id"])

    op.create_table(
        "api_rate_limit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("bucket", sa.String(96), nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_api_rate_limit_bucket_ts", "api_rate_limit_events", ["bucket", "timestamp"],
    )


def downgrade() -> None:
    op.drop_index("ix_api_rate_limit_bucket_ts", table_name="api_rate_limit_events")
    op.drop_table("api_rate_limit_events")
    op.drop_index("ix_scheduled_messages_guild", table_name="scheduled_messages")
    op.drop_index("ix_scheduled_messages_due", table_name="scheduled_messages")
    op.drop_table("scheduled_messages")
    op.drop_index("ix_mod_actions_guild_time", table_name="mod_actions")
    op.drop_table("mod_actions")
    _mod_action_type.drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_warnings_guild_user_active", table_name="warnings")
    op.drop_table("warnings")
    op.drop_index("ix_xp_cooldowns_expires_at", table_name="xp_cooldowns")
    op.drop_table("xp_cooldowns")
    op.drop_index("ix_guild_members_guild_total_xp", table_name="guild_members")
    op.drop_table("guild_members")
    op.drop_table("guild_settings")
