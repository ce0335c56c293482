"""
guildkeeper.engine.cache — Guild Config Cache with PG LISTEN/NOTIFY
====================================================================

Every inbound message needs its guild's configuration, so parsed
:class:`~guildkeeper.engine.guild_config.GuildConfig` objects are kept in
memory with a TTL.  When the dashboard saves a guild's config it fires
``pg_notify('guild_config_changed', '<guild_id>')`` inside the write
transaction; a background thread LISTENs on that channel and evicts the
guild so the next message re-reads it.

Guilds without a stored config (or with one that fails validation) are
cached as ``None`` too, so a busy unconfigured guild doesn't hit the
database on every message.
"""

from __future__ import annotations

import logging
import random
import select as _select
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from guildkeeper.config import DEFAULT_CONFIG_CACHE_TTL
from guildkeeper.database.models import GuildSettings
from guildkeeper.engine.guild_config import (
    GuildConfig,
    GuildConfigError,
    parse_guild_config,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# The PG channel name used for config invalidation
NOTIFY_CHANNEL = "guild_config_changed"

# Payload meaning "drop everything"
NOTIFY_ALL = "*"


class GuildConfigCache:
    """Thread-safe TTL cache of parsed guild configurations.

    Usage::

        cache = GuildConfigCache(engine, ttl_seconds=300)
        cache.start_listener()

        config = cache.get(guild_id)      # GuildConfig | None
    """

    def __init__(
        self,
        engine: Engine,
        ttl_seconds: float = DEFAULT_CONFIG_CACHE_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()

        # guild_id → (expires_at_monotonic, config or None)
        self._entries: dict[int, tuple[float, GuildConfig | None]] = {}
        # Bumped by invalidate() so a load racing an eviction isn't cached
        self._epoch = 0
        self._generations: dict[int, int] = {}

        self._listener_healthy: bool = False
        self._listener_failed: bool = False
        self._listener_thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

    # -------------------------------------------------------------------
    # Lookup (synchronous, call via run_db from async code)
    # -------------------------------------------------------------------
    def get(self, guild_id: int) -> GuildConfig | None:
        """Return the guild's config, loading it from the database on a miss."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(guild_id)
            if entry is not None and entry[0] > now:
                return entry[1]
            generation = self._generation(guild_id)

        config = self._load(guild_id)
        with self._lock:
            # An eviction that landed during _load means config may be stale
            if self._generation(guild_id) == generation:
                self._entries[guild_id] = (now + self._ttl, config)
        return config

    def _generation(self, guild_id: int) -> tuple[int, int]:
        return self._epoch, self._generations.get(guild_id, 0)

    def _load(self, guild_id: int) -> GuildConfig | None:
        with Session(self._engine) as session:
            raw = session.scalar(
                select(GuildSettings.config_json).where(GuildSettings.guild_id == guild_id)
            )
        if raw is None:
            return None
        try:
            return parse_guild_config(raw)
        except GuildConfigError as exc:
            logger.warning(
                "Stored config for guild %s is invalid, treating as unconfigured: %s",
                guild_id, exc,
                extra={"guild_id": guild_id, "errors": exc.errors},
            )
            return None

    def invalidate(self, guild_id: int | None = None) -> None:
        """Evict one guild, or every guild when *guild_id* is None."""
        with self._lock:
            if guild_id is None:
                self._entries.clear()
                self._epoch += 1
            else:
                self._entries.pop(guild_id, None)
                self._generations[guild_id] = self._generations.get(guild_id, 0) + 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -------------------------------------------------------------------
    # Cache invalidation via NOTIFY
    # -------------------------------------------------------------------
    def handle_notify(self, payload: str) -> None:
        """Evict the guild named in a NOTIFY payload."""
        payload = payload.strip()
        if payload == NOTIFY_ALL:
            logger.info("Guild config cache cleared by NOTIFY")
            self.invalidate()
        elif payload.isdigit():
            logger.info("Guild config cache invalidation for guild %s", payload)
            self.invalidate(int(payload))
        else:
            logger.warning("Unrecognised NOTIFY payload: %r — ignoring", payload)

    @property
    def listener_healthy(self) -> bool:
        """Return True if the LISTEN thread is alive and connected."""
        return self._listener_healthy and not self._listener_failed

    @property
    def listener_failed(self) -> bool:
        """Return True if the listener exhausted reconnect attempts."""
        return self._listener_failed

    def stop_listener(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._listener_thread is not None and self._listener_thread.is_alive():
            self._listener_thread.join(timeout=5)
            logger.info("PG NOTIFY listener thread stopped")

    def start_listener(self) -> None:
        """Start a background thread that LISTENs on :data:`NOTIFY_CHANNEL`.

        Uses a raw psycopg2 connection + select() so the event loop is never
        blocked.  Reconnects with exponential backoff and jitter; gives up
        after ten consecutive failures, after which entries only expire by
        TTL.
        """
        import psycopg2

        max_backoff = 60.0
        base_backoff = 1.0
        max_reconnect_attempts = 10

        def _listen_thread() -> None:
            raw_url = self._engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown_event.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {NOTIFY_CHANNEL};")
                    logger.info("PG LISTEN started on channel '%s'", NOTIFY_CHANNEL)

                    attempt = 0
                    self._listener_healthy = True

                    while not self._shutdown_event.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            payload = notify.payload or ""
                            try:
                                self.handle_notify(payload)
                            except Exception:
                                logger.exception(
                                    "Error handling NOTIFY on '%s': %s",
                                    notify.channel, payload,
                                )

                except Exception:
                    self._listener_healthy = False
                    attempt += 1

                    if attempt >= max_reconnect_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. "
                            "Config changes now apply after the cache TTL only.",
                            max_reconnect_attempts,
                        )
                        self._listener_failed = True
                        break

                    backoff = min(base_backoff * (2 ** (attempt - 1)), max_backoff)
                    wait = backoff + random.uniform(0, backoff * 0.5)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). "
                        "Reconnecting in %.1fs…",
                        attempt, max_reconnect_attempts, wait,
                    )
                    if self._shutdown_event.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except Exception:
                            logger.debug("Error closing LISTEN connection", exc_info=True)

        thread = threading.Thread(target=_listen_thread, daemon=True, name="pg-notify-listener")
        self._listener_thread = thread
        thread.start()
        logger.info("PG NOTIFY listener thread started")


# ---------------------------------------------------------------------------
# Sender side (dashboard)
# ---------------------------------------------------------------------------
def notify_config_changed(session: Session, guild_id: int) -> None:
    """Queue a config-changed NOTIFY inside *session*'s transaction.

    PostgreSQL delivers it only if the transaction commits.  No-op on other
    backends (the test suite's SQLite).
    """
    if session.get_bind().dialect.name != "postgresql":
        return
    session.execute(
        text("SELECT pg_notify(:channel, :payload)"),
        {"channel": NOTIFY_CHANNEL, "payload": str(guild_id)},
    )
