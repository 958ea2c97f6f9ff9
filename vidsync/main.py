"""
VidSync — Main FastAPI Application

YouTube playlist mirror with multi-tier cache invalidation.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import aiohttp
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from vidsync.core.config import get_settings
from vidsync.core.database import init_db
from vidsync.services.cache.cdn import CloudflarePurger
from vidsync.services.cache.dispatcher import ChangeNotificationDispatcher
from vidsync.services.cache.revalidation import RevalidationClient
from vidsync.services.youtube.client import YouTubeClient

settings = get_settings()

# ── Logging ──────────────────────────────────────────────────────────────

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level)
    ),
)

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

logger = structlog.get_logger()


# ── Lifespan ─────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks: tables, shared HTTP sessions, dispatcher."""
    logger.info("Starting VidSync", version=settings.app_version)

    await init_db()

    http = aiohttp.ClientSession()
    youtube = YouTubeClient(settings.youtube_api_key)
    app.state.http = http
    app.state.youtube = youtube
    app.state.dispatcher = ChangeNotificationDispatcher(
        purger=CloudflarePurger(http),
        revalidator=RevalidationClient(http),
    )

    logger.info(
        "VidSync ready",
        cloudflare=bool(settings.cloudflare_zone_id),
        revalidation=bool(settings.site_base_url),
        websub=bool(settings.websub_secret),
    )

    yield

    await youtube.close()
    await http.close()
    logger.info("Shutting down VidSync")


# ── App ──────────────────────────────────────────────────────────────────

app = FastAPI(
    title="VidSync",
    description="YouTube playlist synchronization and cache invalidation",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── Routes ───────────────────────────────────────────────────────────────

from vidsync.api.routes import revalidate, sync, videos, webhook  # noqa: E402

app.include_router(webhook.router, prefix=settings.api_prefix)
app.include_router(revalidate.router, prefix=settings.api_prefix)
app.include_router(sync.router, prefix=settings.api_prefix)
app.include_router(videos.router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}
