"""
guildkeeper.bot.__main__ — Entry point for ``python -m guildkeeper.bot``
=========================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (infrastructure settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Build the guild config cache and start its LISTEN/NOTIFY thread.
5. Build the XP cooldown gate.
6. Create the bot with all handles and run it (blocking).
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from guildkeeper.bot.core import GuildKeeperBot
from guildkeeper.config import load_config
from guildkeeper.database.engine import create_db_engine, init_db
from guildkeeper.engine.cache import GuildConfigCache
from guildkeeper.engine.cooldown import CooldownGate

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("guildkeeper")


def main() -> None:
    """Bootstrap and run the GuildKeeper bot."""

    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    cfg = load_config()
    logger.info("Config loaded — Bot: %s", cfg.bot_name)

    engine = create_db_engine()
    init_db(engine)

    config_cache = GuildConfigCache(engine, ttl_seconds=cfg.config_cache_ttl_seconds)
    config_cache.start_listener()

    cooldown_gate = CooldownGate(engine)

    bot = GuildKeeperBot(
        cfg=cfg,
        engine=engine,
        config_cache=config_cache,
        cooldown_gate=cooldown_gate,
    )

    logger.info("Starting %s…", cfg.bot_name)
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
