"""
guildkeeper.api.rate_limit — Config Write Throttle
===================================================

Every dashboard write is charged against two sliding windows at once:

- ``user:<sub>``   — one manager hammering the save button (30 / minute)
- ``guild:<id>``   — every manager of one guild combined (60 / minute),
  since each accepted write makes the bot re-read that guild's config

A write is accepted only if *both* budgets have room, and is then recorded
in both.  Events live in ``api_rate_limit_events`` so the windows are
shared between API workers and survive restarts.  On PostgreSQL the check
and the insert run under transaction-scoped advisory locks on the buckets,
so two workers can't both take the last slot.

Rejections are HTTP 429 with ``Retry-After``; every throttled response
carries ``X-RateLimit-Limit`` / ``X-RateLimit-Remaining`` for the tighter
budget.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy import Engine, delete, func, select, text
from sqlalchemy.orm import Session

from guildkeeper.api.deps import require_guild_access
from guildkeeper.database.engine import dialect_name, get_session
from guildkeeper.database.models import ApiRateLimitEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Budget:
    scope: str
    max_requests: int
    window_seconds: int


USER_BUDGET = Budget("user", max_requests=30, window_seconds=60)
GUILD_BUDGET = Budget("guild", max_requests=60, window_seconds=60)


@dataclass(frozen=True, slots=True)
class Verdict:
    """Outcome of one :meth:`ConfigWriteThrottle.acquire`.

    ``scope``/``limit``/``remaining`` describe the budget closest to
    exhaustion (the one that refused, on a rejection).
    """

    allowed: bool
    scope: str
    limit: int
    remaining: int
    retry_after: int


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class ConfigWriteThrottle:
    """Per-user and per-guild sliding windows over config writes."""

    def __init__(
        self,
        *,
        engine: Engine,
        user_budget: Budget = USER_BUDGET,
        guild_budget: Budget = GUILD_BUDGET,
    ) -> None:
        self.engine = engine
        self.user_budget = user_budget
        self.guild_budget = guild_budget

    @staticmethod
    def bucket(scope: str, key: object) -> str:
        return f"{scope}:{key}"

    def acquire(
        self,
        user_id: str,
        guild_id: int,
        *,
        now: datetime | None = None,
    ) -> Verdict:
        """Charge one write to *user_id* and *guild_id*, or refuse it.

        A refused write is not recorded anywhere, so it doesn't extend the
        caller's penalty.
        """
        now = now or datetime.now(UTC)
        charges = [
            (self.user_budget, self.bucket("user", user_id)),
            (self.guild_budget, self.bucket("guild", guild_id)),
        ]

        with get_session(self.engine) as session:
            self._lock_buckets(session, sorted(bucket for _, bucket in charges))

            verdicts = [self._measure(session, budget, bucket, now) for budget, bucket in charges]
            refused = [v for v in verdicts if not v.allowed]
            if refused:
                return max(refused, key=lambda v: v.retry_after)

            session.add_all(
                ApiRateLimitEvent(bucket=bucket, timestamp=now) for _, bucket in charges
            )

        tightest = min(verdicts, key=lambda v: v.remaining)
        return Verdict(
            allowed=True,
            scope=tightest.scope,
            limit=tightest.limit,
            remaining=tightest.remaining - 1,
            retry_after=0,
        )

    def _lock_buckets(self, session: Session, buckets: list[str]) -> None:
        if dialect_name(session) != "postgresql":
            return
        for bucket in buckets:
            session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:bucket))"),
                {"bucket": bucket},
            )

    def _measure(self, session: Session, budget: Budget, bucket: str, now: datetime) -> Verdict:
        cutoff = now - timedelta(seconds=budget.window_seconds)
        session.execute(
            delete(ApiRateLimitEvent).where(
                ApiRateLimitEvent.bucket == bucket,
                ApiRateLimitEvent.timestamp < cutoff,
            )
        )
        count, oldest = session.execute(
            select(func.count(), func.min(ApiRateLimitEvent.timestamp))
            .where(ApiRateLimitEvent.bucket == bucket)
        ).one()

        if count < budget.max_requests:
            return Verdict(True, budget.scope, budget.max_requests, budget.max_requests - count, 0)

        frees_at = _aware(oldest) + timedelta(seconds=budget.window_seconds)
        retry_after = max(1, int((frees_at - now).total_seconds()) + 1)
        return Verdict(False, budget.scope, budget.max_requests, 0, retry_after)

    def clear(self, *, user_id: str | None = None, guild_id: int | None = None) -> None:
        """Forget recorded writes for one user, one guild, or (no args) everyone."""
        stmt = delete(ApiRateLimitEvent)
        buckets = []
        if user_id is not None:
            buckets.append(self.bucket("user", user_id))
        if guild_id is not None:
            buckets.append(self.bucket("guild", guild_id))
        if buckets:
            stmt = stmt.where(ApiRateLimitEvent.bucket.in_(buckets))
        with get_session(self.engine) as session:
            session.execute(stmt)


def get_write_throttle(request: Request) -> ConfigWriteThrottle:
    throttle = getattr(request.app.state, "write_throttle", None)
    if throttle is None:
        raise RuntimeError("Config write throttle not configured; the app lifespan sets it")
    return throttle


# ---------------------------------------------------------------------------
# FastAPI dependency for write routes (after require_guild_access)
# ---------------------------------------------------------------------------
async def throttled_guild_writer(
    guild_id: int,
    response: Response,
    user: dict = Depends(require_guild_access),
    throttle: ConfigWriteThrottle = Depends(get_write_throttle),
) -> dict:
    """Guild access plus one charge against the write throttle.

    Runs after the access check, so forbidden callers never consume budget.
    """
    verdict = await asyncio.to_thread(throttle.acquire, str(user["sub"]), guild_id)
    headers = {
        "X-RateLimit-Limit": str(verdict.limit),
        "X-RateLimit-Remaining": str(verdict.remaining),
    }
    if not verdict.allowed:
        logger.warning(
            "Config write throttled for user %s on guild %s (%s budget, retry in %ds)",
            user["sub"], guild_id, verdict.scope, verdict.retry_after,
        )
        raise HTTPException(
            status_code=429,
            detail={
                "error": "rate_limit_exceeded",
                "scope": verdict.scope,
                "message": f"Too many config changes for this {verdict.scope}. "
                           f"Try again in {verdict.retry_after}s.",
                "retryAfter": verdict.retry_after,
            },
            headers={**headers, "Retry-After": str(verdict.retry_after)},
        )
    response.headers.update(headers)
    return user
