"""
guildkeeper.api.routes.guilds — Per-guild dashboard endpoints
==============================================================

Every route is scoped to ``/guilds/{guild_id}`` and requires the guild to
appear in the caller's token.  Discord ids are returned as strings.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from guildkeeper.api.deps import get_engine, require_guild_access
from guildkeeper.api.rate_limit import throttled_guild_writer
from guildkeeper.engine.guild_config import GuildConfigError, dump_guild_config
from guildkeeper.services import guild_config_service, moderation_service
from guildkeeper.services.leveling_service import get_leaderboard
from guildkeeper.services.scheduler_service import list_scheduled_messages

router = APIRouter(prefix="/guilds/{guild_id}", tags=["guilds"])
logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _invalid_config(exc: GuildConfigError) -> HTTPException:
    return HTTPException(
        422, detail={"message": str(exc), "errors": exc.errors},
    )


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
@router.get("/config")
def read_config(
    guild_id: int,
    user: dict = Depends(require_guild_access),
    engine=Depends(get_engine),
):
    try:
        config = guild_config_service.get_config(engine, guild_id)
    except GuildConfigError as exc:
        raise _invalid_config(exc)
    if config is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Guild is not configured")
    return dump_guild_config(config)


@router.patch("/config")
def patch_config(
    guild_id: int,
    patch: dict[str, Any] = Body(...),
    user: dict = Depends(throttled_guild_writer),
    engine=Depends(get_engine),
):
    try:
        config = guild_config_service.update_config(engine, guild_id, patch)
    except GuildConfigError as exc:
        logger.info("Rejected config update for guild %s by %s: %s", guild_id, user["sub"], exc)
        raise _invalid_config(exc)
    logger.info("Guild %s config updated by dashboard user %s", guild_id, user["sub"])
    return dump_guild_config(config)


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------
@router.get("/leaderboard")
def read_leaderboard(
    guild_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    user: dict = Depends(require_guild_access),
    engine=Depends(get_engine),
):
    entries, total = get_leaderboard(engine, guild_id, page=page, per_page=limit)
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "entries": [
            {
                "rank": e.rank,
                "userId": str(e.user_id),
                "totalXp": e.total_xp,
                "level": e.level,
                "messageCount": e.message_count,
            }
            for e in entries
        ],
    }


@router.get("/warnings")
def read_warnings(
    guild_id: int,
    user_id: int | None = Query(None),
    user: dict = Depends(require_guild_access),
    engine=Depends(get_engine),
):
    rows = moderation_service.list_warnings(engine, guild_id, user_id, limit=MAX_PAGE_SIZE)
    return {
        "warnings": [
            {
                "id": w.id,
                "userId": str(w.user_id),
                "moderatorId": str(w.moderator_id),
                "reason": w.reason,
                "createdAt": _iso(w.created_at),
            }
            for w in rows
        ],
    }


@router.get("/scheduled")
def read_scheduled(
    guild_id: int,
    user: dict = Depends(require_guild_access),
    engine=Depends(get_engine),
):
    rows = list_scheduled_messages(engine, guild_id)
    return {
        "scheduled": [
            {
                "id": s.id,
                "channelId": str(s.channel_id),
                "message": s.message,
                "embed": s.embed,
                "embedColor": s.embed_color,
                "intervalMinutes": s.interval_minutes,
                "nextRunAt": _iso(s.next_run_at),
                "lastRunAt": _iso(s.last_run_at),
                "enabled": s.enabled,
            }
            for s in rows
        ],
    }
