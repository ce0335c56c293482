"""
guildkeeper.bot.core — Bot Instance & Cog Loader
=================================================

Defines :class:`GuildKeeperBot`, a ``commands.Bot`` subclass that:

1. Holds the shared handles every cog needs: infrastructure config
   (``bot.cfg``), DB engine (``bot.engine``), guild config cache
   (``bot.config_cache``), XP cooldown gate (``bot.cooldown_gate``) and
   message filters (``bot.automod``).
   The bot only *holds* them; services receive them as arguments.
2. Loads every cog listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on startup (guild-scoped when
   ``DEV_GUILD_ID`` is set, global otherwise).
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from guildkeeper.config import BotConfig
from guildkeeper.database.engine import run_db
from guildkeeper.engine.cache import GuildConfigCache
from guildkeeper.engine.cooldown import CooldownGate
from guildkeeper.engine.guild_config import GuildConfig
from guildkeeper.services.automod_service import AutoModerator

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "guildkeeper.bot.cogs.leveling",
    "guildkeeper.bot.cogs.levels",
    "guildkeeper.bot.cogs.moderation",
    "guildkeeper.bot.cogs.membership",
    "guildkeeper.bot.cogs.schedule",
    "guildkeeper.bot.cogs.tasks",
]


class GuildKeeperBot(commands.Bot):
    """Custom Bot subclass that carries project-wide handles.

    Parameters
    ----------
    cfg:
        The parsed :class:`BotConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    config_cache:
        Per-guild configuration cache (invalidated via LISTEN/NOTIFY).
    cooldown_gate:
        Shared-store XP cooldown gate.
    """

    def __init__(
        self,
        cfg: BotConfig,
        engine: Engine,
        config_cache: GuildConfigCache,
        cooldown_gate: CooldownGate,
    ) -> None:
        # MESSAGE_CONTENT is privileged and needed by the automod filters.
        # GUILD_MEMBERS is privileged and needed for welcome/leave + roles.
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.presences = False

        activity = discord.Game(name=cfg.status_message) if cfg.status_message else None
        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=cfg.bot_name,
            activity=activity,
        )

        self.cfg = cfg
        self.engine = engine
        self.config_cache = config_cache
        self.cooldown_gate = cooldown_gate
        self.automod = AutoModerator(engine)

    async def get_guild_config(self, guild_id: int) -> GuildConfig | None:
        """Cached guild config; a cache miss reads the DB on a worker thread."""
        return await run_db(self.config_cache.get, guild_id)

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all cog extensions.  One broken cog doesn't stop the others."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None
        logger.info(
            "Logged in as %s (ID: %s) in %d guild(s)",
            self.user.name, self.user.id, len(self.guilds),
        )

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        """Graceful shutdown — stop the LISTEN thread, then disconnect."""
        logger.info("Bot shutting down…")
        self.config_cache.stop_listener()
        await super().close()
