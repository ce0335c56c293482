"""
guildkeeper.services.guild_config_service — Guild Configuration CRUD
=====================================================================

Read and write the per-guild configuration document.  Writes validate the
*merged* document before persisting, so a stored config is always one
:func:`~guildkeeper.engine.guild_config.parse_guild_config` accepts, and
fire the cache-invalidation NOTIFY inside the same transaction.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from guildkeeper.database.engine import dialect_insert, get_session
from guildkeeper.database.models import GuildSettings
from guildkeeper.engine.cache import notify_config_changed
from guildkeeper.engine.guild_config import (
    GuildConfig,
    GuildConfigError,
    check_wire_keys,
    decode_config_document,
    deep_merge,
    dump_guild_config,
    parse_guild_config,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def get_raw_config(engine: Engine, guild_id: int) -> dict[str, Any] | None:
    """The stored document as-is, or None if the guild was never configured.

    Raises :class:`~guildkeeper.engine.guild_config.GuildConfigError` if the
    stored text isn't a JSON object.
    """
    with Session(engine) as session:
        row = session.get(GuildSettings, guild_id)
        if row is None:
            return None
        return decode_config_document(row.config_json)


def get_config(engine: Engine, guild_id: int) -> GuildConfig | None:
    """Parsed config with defaults applied.

    Raises :class:`~guildkeeper.engine.guild_config.GuildConfigError` if the
    stored document is invalid.
    """
    raw = get_raw_config(engine, guild_id)
    if raw is None:
        return None
    return parse_guild_config(raw)


def _lock_settings_row(session: Session, guild_id: int) -> GuildSettings:
    """Ensure the guild's row exists, then lock it for the rest of the transaction."""
    session.execute(
        dialect_insert(session, GuildSettings)
        .values(guild_id=guild_id, config_json="{}")
        .on_conflict_do_nothing(index_elements=[GuildSettings.guild_id])
    )
    return session.scalars(
        select(GuildSettings)
        .where(GuildSettings.guild_id == guild_id)
        .with_for_update()
    ).one()


def update_config(
    engine: Engine,
    guild_id: int,
    patch: dict[str, Any],
) -> GuildConfig:
    """Deep-merge *patch* into the stored document, validate, persist.

    Keys the bot doesn't model are preserved.  A stored document that isn't
    a JSON object is replaced by *patch*.  Raises
    :class:`~guildkeeper.engine.guild_config.GuildConfigError` without
    writing anything when *patch* uses snake_case field names or the merged
    document is invalid.
    """
    check_wire_keys(patch)

    with get_session(engine) as session:
        row = _lock_settings_row(session, guild_id)
        try:
            current = decode_config_document(row.config_json)
        except GuildConfigError as exc:
            logger.warning("Replacing unreadable config for guild %s: %s", guild_id, exc)
            current = {}

        merged = deep_merge(current, patch)
        config = parse_guild_config(merged)

        row.config_json = json.dumps(merged)
        session.flush()
        notify_config_changed(session, guild_id)

    logger.info(
        "Guild %s config updated (sections: %s)",
        guild_id, ", ".join(sorted(patch)) or "none",
    )
    return config


def initialize_config(engine: Engine, guild_id: int) -> GuildConfig:
    """Store the default config for a guild that has none.  Idempotent."""
    with get_session(engine) as session:
        row = session.get(GuildSettings, guild_id)
        if row is not None:
            return parse_guild_config(row.config_json)
        config = GuildConfig()
        session.add(
            GuildSettings(guild_id=guild_id, config_json=json.dumps(dump_guild_config(config)))
        )
        session.flush()
        notify_config_changed(session, guild_id)

    logger.info("Initialized default config for guild %s", guild_id)
    return config
