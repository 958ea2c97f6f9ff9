"""
VidSync Celery Worker Tasks

Scheduled / queued work:
- Full sync of every active playlist
- Single playlist sync (webhook fan-out, admin retries)
- Daily orphaned-video cleanup
- WebSub hub subscription renewal (inside the 5-day hub lease)
- Statistics / tier refresh for recent and stale videos
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import aiohttp
from celery import Celery
from celery.schedules import crontab

from vidsync.core.config import get_settings
from vidsync.models.models import SyncTrigger

settings = get_settings()
logger = logging.getLogger(__name__)

# ── Celery App ───────────────────────────────────────────────────────────

celery_app = Celery(
    "vidsync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=900,
    task_time_limit=1200,
    task_default_queue="default",
    task_routes={
        "vidsync.workers.tasks.sync_all_playlists_task": {"queue": "sync"},
        "vidsync.workers.tasks.sync_playlist_task": {"queue": "sync"},
        "vidsync.workers.tasks.cleanup_orphans_task": {"queue": "default"},
        "vidsync.workers.tasks.renew_websub_task": {"queue": "default"},
        "vidsync.workers.tasks.refresh_stats_task": {"queue": "sync"},
    },
)

# ── Periodic Tasks ───────────────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    "sync-all-playlists": {
        "task": "vidsync.workers.tasks.sync_all_playlists_task",
        "schedule": settings.sync_interval_seconds,
    },
    "cleanup-orphaned-videos-daily": {
        "task": "vidsync.workers.tasks.cleanup_orphans_task",
        "schedule": crontab(hour=3, minute=0),  # 3 AM daily
    },
    "renew-websub-subscription": {
        "task": "vidsync.workers.tasks.renew_websub_task",
        "schedule": settings.websub_renew_interval_seconds,
    },
    "refresh-video-statistics": {
        "task": "vidsync.workers.tasks.refresh_stats_task",
        "schedule": settings.stats_refresh_interval_seconds,
    },
}


# ── Helpers ──────────────────────────────────────────────────────────────

def run_async(coro):
    """Run an async coroutine from sync Celery task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@asynccontextmanager
async def sync_service():
    """A SyncService with its own HTTP sessions, torn down afterwards."""
    from vidsync.core.database import async_session_factory, engine
    from vidsync.services.cache.cdn import CloudflarePurger
    from vidsync.services.cache.dispatcher import ChangeNotificationDispatcher
    from vidsync.services.cache.revalidation import RevalidationClient
    from vidsync.services.sync.sync_service import SyncService
    from vidsync.services.youtube.client import YouTubeClient

    async with aiohttp.ClientSession() as http, YouTubeClient(settings.youtube_api_key) as youtube:
        dispatcher = ChangeNotificationDispatcher(
            purger=CloudflarePurger(http),
            revalidator=RevalidationClient(http),
        )
        try:
            yield SyncService(youtube, async_session_factory, dispatcher)
        finally:
            # pooled connections are bound to this task's event loop
            await engine.dispose()


async def _sync_all(playlist_ids: Optional[List[str]], trigger: str) -> dict:
    async with sync_service() as service:
        result = await service.sync_all(playlist_ids, trigger=trigger)
    return result.to_dict()


async def _sync_one(playlist_id: str, trigger: str) -> dict:
    async with sync_service() as service:
        outcome = await service.sync_playlist(playlist_id, trigger=trigger)
    return outcome.__dict__


async def _cleanup() -> int:
    async with sync_service() as service:
        return await service.cleanup_orphaned_videos()


async def _refresh_stats() -> dict:
    async with sync_service() as service:
        return await service.refresh_video_statistics()


async def _renew_websub(channel_id: Optional[str]) -> dict:
    from vidsync.core.database import async_session_factory, engine
    from vidsync.services.webhook.subscription import WebSubSubscriber

    try:
        async with aiohttp.ClientSession() as http:
            result = await WebSubSubscriber(http, async_session_factory).renew(channel_id)
    finally:
        await engine.dispose()
    return result.to_dict()


# ── Tasks ────────────────────────────────────────────────────────────────

@celery_app.task(name="vidsync.workers.tasks.sync_all_playlists_task")
def sync_all_playlists_task(playlist_ids: Optional[List[str]] = None, trigger: str = SyncTrigger.SCHEDULED.value):
    """Sync every active playlist (or the given subset)."""
    logger.info("Starting playlist sync cycle")
    result = run_async(_sync_all(playlist_ids, trigger))
    logger.info(
        f"Sync cycle {result['trace_id']} complete: {result['playlists_synced']} synced, "
        f"{result['playlists_failed']} failed"
    )
    return result


@celery_app.task(
    name="vidsync.workers.tasks.sync_playlist_task",
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    acks_late=True,
)
def sync_playlist_task(self, playlist_id: str, trigger: str = SyncTrigger.MANUAL.value):
    """Sync one playlist; transient failures are retried with backoff."""
    from vidsync.services.sync.reconciler import ReconcileError

    try:
        return run_async(_sync_one(playlist_id, trigger))
    except ReconcileError:
        logger.error(f"Playlist {playlist_id} is not tracked; not retrying")
        raise
    except Exception as exc:
        logger.error(f"Sync task failed for {playlist_id}: {exc}")
        raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))


@celery_app.task(name="vidsync.workers.tasks.cleanup_orphans_task")
def cleanup_orphans_task():
    removed = run_async(_cleanup())
    logger.info(f"Orphan cleanup removed {removed} videos")
    return removed


@celery_app.task(name="vidsync.workers.tasks.renew_websub_task")
def renew_websub_task(channel_id: Optional[str] = None):
    """Re-subscribe to the channel feed; a failed renewal is recorded and retried next cycle."""
    result = run_async(_renew_websub(channel_id))
    if result["success"]:
        logger.info(f"WebSub subscription for {result['channelId']} renewed until {result['expiresAt']}")
    else:
        logger.warning(f"WebSub renewal for {result['channelId']} failed: {result['error']}")
    return result


@celery_app.task(name="vidsync.workers.tasks.refresh_stats_task")
def refresh_stats_task():
    summary = run_async(_refresh_stats())
    logger.info(f"Statistics refresh: {summary['updated']}/{summary['checked']} videos updated")
    return summary
