"""
guildkeeper.services.scheduler_service — Scheduled Announcements
=================================================================

CRUD for ``scheduled_messages`` plus the two calls the polling loop makes:
:func:`get_due_messages` and :func:`mark_ran`.

A message either repeats every ``interval_minutes`` or fires once at
``next_run_at`` and is then disabled.  Repeats are rescheduled relative to
when they actually ran, so a bot that was offline for a while posts each
overdue message once rather than replaying every missed slot.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from guildkeeper.constants import render_template
from guildkeeper.database.engine import get_session
from guildkeeper.database.models import ScheduledMessage

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000
MIN_INTERVAL_MINUTES = 1
MAX_INTERVAL_MINUTES = 60 * 24 * 30  # 30 days
MAX_SCHEDULES_PER_GUILD = 25


def create_scheduled_message(
    engine: Engine,
    guild_id: int,
    channel_id: int,
    message: str,
    *,
    created_by: int,
    interval_minutes: int | None = None,
    run_at: datetime | None = None,
    embed: bool = False,
    embed_color: str | None = None,
    now: datetime | None = None,
) -> ScheduledMessage:
    """Create a one-shot (``run_at``) or repeating (``interval_minutes``) message.

    A repeating message starts at *run_at* when given, otherwise one
    interval from now.

    Raises
    ------
    ValueError
        On an empty or over-long message, an interval out of range, a
        one-shot without ``run_at``, or a guild already at its schedule cap.
    """
    now = now or datetime.now(UTC)
    message = message.strip()
    if not message:
        raise ValueError("Message must not be empty")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValueError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")

    if interval_minutes is not None:
        if not MIN_INTERVAL_MINUTES <= interval_minutes <= MAX_INTERVAL_MINUTES:
            raise ValueError(
                f"Interval must be between {MIN_INTERVAL_MINUTES} and "
                f"{MAX_INTERVAL_MINUTES} minutes"
            )
        next_run = run_at or now + timedelta(minutes=interval_minutes)
    elif run_at is not None:
        next_run = run_at
    else:
        raise ValueError("Either run_at or interval_minutes is required")

    with get_session(engine) as session:
        existing = len(session.scalars(
            select(ScheduledMessage.id).where(ScheduledMessage.guild_id == guild_id)
        ).all())
        if existing >= MAX_SCHEDULES_PER_GUILD:
            raise ValueError(
                f"This server already has {MAX_SCHEDULES_PER_GUILD} scheduled messages"
            )

        row = ScheduledMessage(
            guild_id=guild_id,
            channel_id=channel_id,
            message=message,
            embed=embed,
            embed_color=embed_color,
            interval_minutes=interval_minutes,
            next_run_at=next_run,
            enabled=True,
            created_by=created_by,
        )
        session.add(row)
        session.flush()
        session.expunge(row)

    logger.info(
        "Scheduled message %s created in guild %s (channel %s, interval=%s)",
        row.id, guild_id, channel_id, interval_minutes,
    )
    return row


def list_scheduled_messages(engine: Engine, guild_id: int) -> list[ScheduledMessage]:
    with Session(engine) as session:
        return list(session.scalars(
            select(ScheduledMessage)
            .where(ScheduledMessage.guild_id == guild_id)
            .order_by(ScheduledMessage.id)
        ).all())


def delete_scheduled_message(engine: Engine, guild_id: int, message_id: int) -> bool:
    """Delete one of the guild's scheduled messages.  False if it isn't theirs."""
    with get_session(engine) as session:
        row = session.get(ScheduledMessage, message_id)
        if row is None or row.guild_id != guild_id:
            return False
        session.delete(row)
    logger.info("Scheduled message %s deleted from guild %s", message_id, guild_id)
    return True


def toggle_scheduled_message(engine: Engine, guild_id: int, message_id: int) -> bool | None:
    """Flip ``enabled``.  Returns the new state, or None if not found."""
    with get_session(engine) as session:
        row = session.get(ScheduledMessage, message_id)
        if row is None or row.guild_id != guild_id:
            return None
        row.enabled = not row.enabled
        return row.enabled


def get_due_messages(engine: Engine, now: datetime | None = None) -> list[ScheduledMessage]:
    """Every enabled message whose ``next_run_at`` has passed, oldest first."""
    now = now or datetime.now(UTC)
    with Session(engine) as session:
        return list(session.scalars(
            select(ScheduledMessage)
            .where(
                ScheduledMessage.enabled.is_(True),
                ScheduledMessage.next_run_at <= now,
            )
            .order_by(ScheduledMessage.next_run_at)
        ).all())


def mark_ran(engine: Engine, message_id: int, now: datetime | None = None) -> None:
    """Record a run: reschedule a repeat, disable a one-shot."""
    now = now or datetime.now(UTC)
    with get_session(engine) as session:
        row = session.get(ScheduledMessage, message_id)
        if row is None:
            return
        row.last_run_at = now
        if row.interval_minutes:
            row.next_run_at = now + timedelta(minutes=row.interval_minutes)
        else:
            row.enabled = False


def render_scheduled_message(
    template: str,
    *,
    server: str,
    member_count: int,
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(UTC)
    return render_template(template, {
        "server": server,
        "memberCount": member_count,
        "date": now.strftime("%Y-%m-%d"),
        "time": now.strftime("%H:%M UTC"),
    })
