"""
guildkeeper.api.main — FastAPI application entry point
========================================================

Run with::

    uvicorn guildkeeper.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from guildkeeper import __version__  # noqa: E402
from guildkeeper.api.deps import get_engine  # noqa: E402
from guildkeeper.api.rate_limit import ConfigWriteThrottle  # noqa: E402
from guildkeeper.api.routes.guilds import router as guilds_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Allowed origins: ``CORS_ALLOW_ORIGINS`` (comma-separated), else ``FRONTEND_URL``."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = get_engine()
    app.state.write_throttle = ConfigWriteThrottle(engine=engine)
    logger.info("GuildKeeper API started (%s)", engine.url.database)
    yield
    logger.info("GuildKeeper API shutting down")


app = FastAPI(
    title="GuildKeeper Dashboard API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(guilds_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
