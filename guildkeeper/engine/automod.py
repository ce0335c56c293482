"""
guildkeeper.engine.automod — Message Filter Rules
==================================================

Pure rule evaluation for auto-moderation; no Discord or database I/O.
:class:`~guildkeeper.services.automod_service.AutoModerator` feeds each
message through :func:`evaluate` and carries out the returned
:class:`Violation`.

Rules run in a fixed order (spam, blocked words, links, caps) and the
first one that matches decides the action, so a message is punished at
most once.
"""

from __future__ import annotations

import re
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlsplit

from guildkeeper.engine.guild_config import AutoModConfig

URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class Violation:
    rule: str
    action: str
    reason: str
    mute_minutes: int | None = None


# ---------------------------------------------------------------------------
# Spam tracking
# ---------------------------------------------------------------------------
class SpamTracker:
    """Sliding window of recent message times per (guild, user).

    Lives in the bot process and is only touched from the event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._stamps: dict[tuple[int, int], list[float]] = defaultdict(list)

    def hit(self, guild_id: int, user_id: int, window_seconds: float) -> int:
        """Record a message and return how many fall inside the window."""
        now = self._clock()
        cutoff = now - window_seconds
        key = (guild_id, user_id)
        stamps = [t for t in self._stamps[key] if t > cutoff]
        stamps.append(now)
        self._stamps[key] = stamps
        return len(stamps)

    def prune(self, max_window_seconds: float = 60) -> int:
        """Forget members idle for longer than any window.  Returns keys dropped."""
        cutoff = self._clock() - max_window_seconds
        idle = [key for key, stamps in self._stamps.items() if not stamps or stamps[-1] <= cutoff]
        for key in idle:
            del self._stamps[key]
        return len(idle)

    def __len__(self) -> int:
        return len(self._stamps)


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------
def find_blocked_word(content: str, words: list[str]) -> str | None:
    """First filtered word contained in *content*, case-insensitively."""
    lowered = content.lower()
    for word in words:
        if word.lower() in lowered:
            return word
    return None


def _domain_allowed(host: str, allowed_domains: list[str]) -> bool:
    for domain in allowed_domains:
        domain = domain.lower().strip().lstrip(".")
        if domain and (host == domain or host.endswith("." + domain)):
            return True
    return False


def find_blocked_links(content: str, allowed_domains: list[str]) -> list[str]:
    """URLs in *content* whose host isn't an allowed domain or a subdomain of one.

    A URL that can't be parsed counts as blocked.
    """
    blocked = []
    for url in URL_RE.findall(content):
        try:
            host = urlsplit(url).hostname
        except ValueError:
            host = None
        if not host or not _domain_allowed(host.lower(), allowed_domains):
            blocked.append(url)
    return blocked


def caps_percentage(content: str) -> float | None:
    """Share of letters that are upper case, 0-100.  None without letters."""
    letters = [c for c in content if c.isalpha()]
    if not letters:
        return None
    upper = sum(1 for c in letters if c.isupper())
    return upper * 100 / len(letters)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------
def evaluate(config: AutoModConfig, content: str, recent_messages: int = 0) -> Violation | None:
    """The violation *content* commits under *config*, if any.

    *recent_messages* is the sender's count from :meth:`SpamTracker.hit`,
    including this message.
    """
    spam = config.anti_spam
    if spam.enabled and recent_messages > spam.max_messages:
        return Violation(
            "spam", spam.action,
            f"Spam detected ({recent_messages} messages in {spam.interval}s)",
            spam.mute_duration,
        )

    words = config.word_filter
    if words.enabled and words.words and find_blocked_word(content, words.words):
        return Violation("words", words.action, "Blocked word detected", words.mute_duration)

    links = config.link_filter
    if links.enabled and find_blocked_links(content, links.allowed_domains):
        return Violation("links", links.action, "Unapproved link detected", links.mute_duration)

    caps = config.caps_filter
    if caps.enabled and len(content) >= caps.min_length:
        share = caps_percentage(content)
        if share is not None and share > caps.threshold:
            return Violation("caps", caps.action, f"Excessive caps ({share:.0f}%)")

    return None
