"""
guildkeeper.constants — Shared Constants & Helpers
===================================================

Single source of truth for presentation constants, the leveling formula,
and the small text helpers shared by cogs, services, and the dashboard.
"""

from __future__ import annotations

import math
import re
from datetime import timedelta

# ---------------------------------------------------------------------------
# Leveling defaults
# ---------------------------------------------------------------------------
XP_PER_MESSAGE_MIN = 15
XP_PER_MESSAGE_MAX = 25
XP_COOLDOWN_SECONDS = 60

# level = floor(LEVEL_FACTOR * sqrt(total_xp))
LEVEL_FACTOR = 0.1

MAX_ROLE_REWARDS = 25

DEFAULT_LEVEL_UP_MESSAGE = "Congratulations {user}! You reached level **{level}**!"

# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------
COLOR_PRIMARY = 0x5865F2
COLOR_SUCCESS = 0x57F287
COLOR_WARNING = 0xFEE75C
COLOR_ERROR = 0xED4245

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉


# ---------------------------------------------------------------------------
# Leveling formula: THE single canonical implementation
# ---------------------------------------------------------------------------
def level_for_xp(total_xp: int) -> int:
    """Level reached with *total_xp*: ``floor(0.1 * sqrt(total_xp))``.

    Computed with integer square roots so large totals never drift across
    a level boundary through float rounding.  ``floor(sqrt(t) / 10)`` is
    exactly ``isqrt(t) // 10``.
    """
    if total_xp <= 0:
        return 0
    return math.isqrt(total_xp) // 10


def xp_for_level(level: int) -> int:
    """Total XP required to reach *level* (inverse of :func:`level_for_xp`)."""
    if level <= 0:
        return 0
    return 100 * level * level


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------
_DURATION_RE = re.compile(r"^(\d+)([smhdw])$", re.IGNORECASE)

_DURATION_UNITS: dict[str, timedelta] = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


def parse_duration(text: str) -> timedelta | None:
    """Parse ``"10m"``, ``"2h"``, ``"1d"`` … into a timedelta.

    Returns None for anything that isn't ``<digits><s|m|h|d|w>``.
    """
    match = _DURATION_RE.match(text.strip())
    if not match:
        return None
    value, unit = match.groups()
    return int(value) * _DURATION_UNITS[unit.lower()]


def format_duration(delta: timedelta) -> str:
    """Render a timedelta as ``"1d 2h 3m"`` / ``"2h 3m 4s"`` / ``"3m 4s"`` / ``"4s"``."""
    seconds = int(delta.total_seconds())
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)

    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def format_number(num: int) -> str:
    """Compact number formatting: 1500 → ``1.5K``, 2_000_000 → ``2.0M``."""
    if num >= 1_000_000:
        return f"{num / 1_000_000:.1f}M"
    if num >= 1_000:
        return f"{num / 1_000:.1f}K"
    return str(num)


def ordinal(n: int) -> str:
    """1 → ``1st``, 2 → ``2nd``, 11 → ``11th``, 23 → ``23rd``."""
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def render_template(template: str, variables: dict[str, object]) -> str:
    """Replace every ``{name}`` placeholder present in *variables*.

    Unknown placeholders are left as-is so admin typos show up in the output
    instead of raising.
    """
    result = template
    for name, value in variables.items():
        result = result.replace("{" + name + "}", str(value))
    return result


def parse_hex_color(value: str | None, default: int) -> int:
    """``"#5865F2"`` → ``0x5865F2``; falls back to *default* on bad input."""
    if not value:
        return default
    try:
        return int(value.lstrip("#"), 16)
    except ValueError:
        return default
