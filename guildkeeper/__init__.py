"""
GuildKeeper — Community Management Bot for Discord
====================================================
Leveling, moderation, welcome messages and scheduled announcements, plus a
dashboard API for editing each guild's configuration.

Package layout::

    guildkeeper/
    ├── config.py          # YAML → typed infrastructure config
    ├── constants.py       # Leveling formula, colours, text helpers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models
    ├── engine/
    │   ├── guild_config.py  # Typed per-guild configuration (pydantic)
    │   ├── leveling.py    # Pure XP / level maths
    │   ├── cooldown.py    # Atomic XP cooldown gate
    │   └── cache.py       # Guild config cache + PG LISTEN/NOTIFY
    ├── services/
    │   ├── leveling_service.py   # XP award path, rank, leaderboard
    │   ├── level_up_service.py   # Role rewards + level-up notification
    │   ├── guild_config_service.py
    │   ├── moderation_service.py
    │   ├── scheduler_service.py
    │   └── embeds.py
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/          # leveling, levels, moderation, membership, schedule, tasks
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT + engine dependencies
        ├── rate_limit.py  # Per-user mutation throttle
        └── routes/guilds.py
"""

__version__ = "0.1.0"
