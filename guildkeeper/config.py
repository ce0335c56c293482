"""
guildkeeper.config — YAML Configuration Loader
===============================================

Reads ``config.yaml`` for **infrastructure-only** settings (bot identity,
dashboard port, cache tuning).  Everything a guild admin can change —
leveling, moderation, welcome messages — lives in the ``guild_settings``
table and is parsed by :mod:`guildkeeper.engine.guild_config`.

Usage::

    from guildkeeper.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.bot_prefix)        # "!"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

DEFAULT_CONFIG_CACHE_TTL = 300  # seconds


@dataclass(frozen=True, slots=True)
class BotConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    bot_name: str
    bot_prefix: str
    dashboard_port: int

    # How long a parsed guild config stays cached before it is re-read
    config_cache_ttl_seconds: int = DEFAULT_CONFIG_CACHE_TTL

    # Optional "Playing …" status line
    status_message: str | None = None


def load_config(path: str | Path = "config.yaml") -> BotConfig:
    """Read *path* and return a :class:`BotConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return BotConfig(
        bot_name=raw["bot_name"],
        bot_prefix=raw["bot_prefix"],
        dashboard_port=int(raw["dashboard_port"]),
        config_cache_ttl_seconds=int(
            raw.get("config_cache_ttl_seconds", DEFAULT_CONFIG_CACHE_TTL)
        ),
        status_message=raw.get("status_message") or None,
    )
