"""Moderation actions: tempbans, timeouts, unbans and automod deletions

Revision ID: 0002_moderation_actions
Revises: 0001_initial_schema
Create Date: 2026-10-17 15:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002_moderation_actions"
down_revision: str | Sequence[str] | None = "0001_initial_schema"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_NEW_ACTIONS = ("TEMPBAN", "UNBAN", "TIMEOUT", "UNTIMEOUT", "AUTOMOD_DELETE")


def upgrade() -> None:
    # ADD VALUE can't run inside a transaction block on older PostgreSQL
    with op.get_context().autocommit_block():
        for value in _NEW_ACTIONS:
            op.execute(f"ALTER TYPE modactiontype ADD VALUE IF NOT EXISTS '{value}'")

    op.add_column("mod_actions", sa.Column("duration_seconds", sa.Integer(), nullable=True))

    op.create_table(
        "temp_bans",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("moderator_id", sa.BigInteger(), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_temp_bans_due", "temp_bans", ["active", "expires_at"])
    op.create_index("ix_temp_bans_guild_user", "temp_bans", ["guild_id", "user_id"])


def downgrade() -> None:
    op.drop_index("ix_temp_bans_guild_user", table_name="temp_bans")
    op.drop_index("ix_temp_bans_due", table_name="temp_bans")
    op.drop_table("temp_bans")
    op.drop_column("mod_actions", "duration_seconds")

    # PostgreSQL can't drop enum values; rebuild the type without them
    values = ", ".join(f"'{v}'" for v in _NEW_ACTIONS)
    op.execute(f"DELETE FROM mod_actions WHERE action IN ({values})")
    op.execute("ALTER TYPE modactiontype RENAME TO modactiontype_old")
    sa.Enum("WARN", "CLEAR_WARNINGS", "KICK", "BAN", name="modactiontype").create(op.get_bind())
    op.execute(
        "ALTER TABLE mod_actions ALTER COLUMN action TYPE modactiontype "
        "USING action::text::modactiontype"
    )
    op.execute("DROP TYPE modactiontype_old")
