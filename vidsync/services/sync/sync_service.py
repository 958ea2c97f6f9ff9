"""
VidSync Sync Service — orchestrates playlist syncs for every trigger.

  - sync_playlist: lease -> reconcile -> invalidate -> release
  - sync_all: every active playlist, sequentially; one failure never stops
    the rest, errors are collected into the aggregate result
  - update_channel_info / cleanup_orphaned_videos / get_statistics
  - refresh_video_statistics: periodic counts + tier refresh in batches of 50
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidsync.core.config import Settings, get_settings
from vidsync.models.models import Playlist, SyncStatus, SyncTrigger, Video
from vidsync.services.cache.dispatcher import ChangeNotificationDispatcher
from vidsync.services.cache.paths import ContentChange
from vidsync.services.sync.helpers import as_utc, chunked, utcnow
from vidsync.services.sync.lease import LeaseManager
from vidsync.services.sync.reconciler import PlaylistReconciler, ReconcileError, ReconcileResult, video_fields
from vidsync.services.sync.repository import SyncRepository
from vidsync.services.youtube.client import RemotePlaylistItem, YouTubeClient

logger = logging.getLogger(__name__)


def new_trace_id(prefix: str = "sync") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass
class PlaylistSyncOutcome:
    playlist_id: str
    status: str
    skipped: bool = False
    videos_added: int = 0
    videos_updated: int = 0
    videos_removed: int = 0
    duration: float = 0.0
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_result(cls, result: ReconcileResult) -> "PlaylistSyncOutcome":
        return cls(
            playlist_id=result.playlist_id,
            status=result.status,
            skipped=result.skipped,
            videos_added=result.videos_added,
            videos_updated=result.videos_updated,
            videos_removed=result.videos_removed,
            duration=round(result.duration, 3),
            errors=list(result.errors),
        )


@dataclass
class BulkSyncResult:
    trace_id: str
    trigger: str
    success: bool = True
    playlists_synced: int = 0
    playlists_skipped: int = 0
    playlists_failed: int = 0
    videos_added: int = 0
    videos_updated: int = 0
    videos_removed: int = 0
    duration: float = 0.0
    errors: List[str] = field(default_factory=list)
    playlists: List[PlaylistSyncOutcome] = field(default_factory=list)

    def add(self, outcome: PlaylistSyncOutcome) -> None:
        self.playlists.append(outcome)
        if outcome.status == SyncStatus.FAILED.value:
            self.playlists_failed += 1
        elif outcome.skipped and outcome.status == "locked":
            self.playlists_skipped += 1
        else:
            self.playlists_synced += 1
        self.videos_added += outcome.videos_added
        self.videos_updated += outcome.videos_updated
        self.videos_removed += outcome.videos_removed
        self.errors.extend(f"{outcome.playlist_id}: {e}" for e in outcome.errors)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SyncService:
    def __init__(
        self,
        client: YouTubeClient,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: ChangeNotificationDispatcher,
        *,
        leases: Optional[LeaseManager] = None,
        settings: Optional[Settings] = None,
    ):
        self.client = client
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.leases = leases or LeaseManager(session_factory)
        self.settings = settings or get_settings()

    # ── Single playlist ──────────────────────────────────────────────────

    async def sync_playlist(
        self,
        playlist_id: str,
        *,
        trigger: str = SyncTrigger.MANUAL.value,
        trace_id: Optional[str] = None,
        items: Optional[Sequence[RemotePlaylistItem]] = None,
    ) -> PlaylistSyncOutcome:
        """Raises whatever the reconciler raised; a held lease is a `locked` skip."""
        trace_id = trace_id or new_trace_id()
        async with self.session_factory() as db:
            playlist = await SyncRepository(db).get_playlist(playlist_id)
            if playlist is None:
                raise ReconcileError(f"Playlist {playlist_id} is not tracked")
            slug = playlist.slug

        async with self.leases.lease(playlist_id, trace_id) as acquired:
            if not acquired:
                logger.info(f"[{trace_id}] Playlist {playlist_id} is locked by another sync; skipping")
                return PlaylistSyncOutcome(
                    playlist_id=playlist_id, status="locked", skipped=True,
                    errors=["lease held by another sync"],
                )
            async with self.session_factory() as db:
                result = await PlaylistReconciler(self.client, db, settings=self.settings).reconcile(
                    playlist_id, items=items, trigger=trigger, trace_id=trace_id,
                    heartbeat=lambda: self.leases.extend(playlist_id, trace_id),
                )

        if result.changed:
            await self._invalidate(playlist_id, slug, result)
        return PlaylistSyncOutcome.from_result(result)

    async def _invalidate(self, playlist_id: str, slug: Optional[str], result: ReconcileResult) -> None:
        home = playlist_id in self.settings.hero_playlist_ids or playlist_id in self.settings.shorts_playlist_ids
        change = ContentChange(
            kind="playlist",
            video_ids=result.changed_video_ids,
            playlist_ids=[playlist_id],
            playlist_slugs=[slug] if slug else [],
            tiers=list(dict.fromkeys(result.tiers)),
            has_shorts=result.has_shorts or playlist_id in self.settings.shorts_playlist_ids,
            homepage=home,
        )
        await self.dispatcher.dispatch(change)

    # ── Bulk ─────────────────────────────────────────────────────────────

    async def sync_all(
        self,
        playlist_ids: Optional[Iterable[str]] = None,
        *,
        trigger: str = SyncTrigger.SCHEDULED.value,
        trace_id: Optional[str] = None,
    ) -> BulkSyncResult:
        started = time.monotonic()
        bulk = BulkSyncResult(trace_id=trace_id or new_trace_id(), trigger=trigger)

        async with self.session_factory() as db:
            playlists = await SyncRepository(db).list_active_playlists(playlist_ids)
            targets = [p.playlist_id for p in playlists]

        if not targets:
            bulk.success = False
            bulk.errors.append("No active playlists found")
            return bulk

        logger.info(f"[{bulk.trace_id}] Syncing {len(targets)} playlists ({trigger})")
        for playlist_id in targets:
            try:
                outcome = await self.sync_playlist(playlist_id, trigger=trigger, trace_id=bulk.trace_id)
            except Exception as e:
                logger.error(f"[{bulk.trace_id}] Playlist {playlist_id} failed: {e}")
                outcome = PlaylistSyncOutcome(
                    playlist_id=playlist_id, status=SyncStatus.FAILED.value, errors=[str(e)],
                )
            bulk.add(outcome)

        await self.update_channel_info()
        bulk.duration = round(time.monotonic() - started, 3)
        bulk.success = bulk.playlists_failed < len(targets)
        logger.info(
            f"[{bulk.trace_id}] Sync finished: {bulk.playlists_synced} synced, "
            f"{bulk.playlists_failed} failed, {bulk.playlists_skipped} locked"
        )
        return bulk

    # ── Channel / housekeeping ───────────────────────────────────────────

    async def update_channel_info(self) -> bool:
        channel_id = self.settings.youtube_channel_id
        if not channel_id:
            return False
        try:
            channel = await self.client.fetch_channel(channel_id)
            if channel is None:
                return False
            async with self.session_factory() as db:
                await SyncRepository(db).upsert_channel_info(
                    channel_id,
                    title=channel.title,
                    description=channel.description,
                    custom_url=channel.custom_url,
                    thumbnail_url=channel.thumbnail_url,
                    subscriber_count=channel.subscriber_count,
                    video_count=channel.video_count,
                    view_count=channel.view_count,
                    uploads_playlist_id=channel.uploads_playlist_id,
                    last_fetched_at=utcnow(),
                )
            return True
        except Exception as e:
            logger.warning(f"Channel info update failed for {channel_id}: {e}")
            return False

    async def cleanup_orphaned_videos(self) -> int:
        async with self.session_factory() as db:
            removed = await SyncRepository(db).delete_orphaned_videos()
            await db.commit()
        logger.info(f"Cleaned up {removed} orphaned videos")
        if removed:
            await self.dispatcher.dispatch(ContentChange(kind="video"))
        return removed

    async def refresh_video_statistics(self) -> Dict[str, Any]:
        """
        Re-fetch view/like/comment counts and recompute tiers for recent and
        stale videos. Videos the API no longer returns are only reported.
        """
        now = utcnow()
        async with self.session_factory() as db:
            video_ids = await SyncRepository(db).videos_due_for_refresh(
                published_after=now - timedelta(days=self.settings.stats_refresh_recent_days),
                synced_before=now - timedelta(days=self.settings.stats_refresh_stale_days),
                limit=self.settings.stats_refresh_limit,
            )
        summary: Dict[str, Any] = {"checked": len(video_ids), "updated": 0, "unavailable": [], "errors": []}
        if not video_ids:
            return summary

        tiers: List[str] = []
        updated: List[str] = []
        for batch in chunked(video_ids, self.settings.youtube_details_batch_size):
            try:
                details = await self.client.fetch_video_details(batch)
                async with self.session_factory() as db:
                    repo = SyncRepository(db)
                    for remote in details:
                        fields = video_fields(remote, self.settings)
                        await repo.upsert_video(remote.video_id, fields)
                        tiers.append(fields["tier"])
                        updated.append(remote.video_id)
                    await db.commit()
                summary["unavailable"].extend(sorted(set(batch) - {v.video_id for v in details}))
            except Exception as e:
                logger.error(f"Statistics refresh failed for {len(batch)} videos ({batch[0]}..): {e}")
                summary["errors"].append(str(e))

        summary["updated"] = len(updated)
        if summary["unavailable"]:
            logger.info(f"{len(summary['unavailable'])} videos returned no detail (private or deleted)")
        if updated:
            await self.dispatcher.dispatch(ContentChange(
                kind="video", tiers=list(dict.fromkeys(tiers)),
            ))
        logger.info(f"Statistics refreshed for {len(updated)}/{len(video_ids)} videos")
        return summary

    async def get_statistics(self) -> Dict[str, Any]:
        async with self.session_factory() as db:
            repo = SyncRepository(db)
            total_videos = await db.scalar(select(func.count(Video.id))) or 0
            total_playlists = await db.scalar(
                select(func.count(Playlist.id)).where(Playlist.is_active.is_(True))
            ) or 0
            recent = await repo.recent_sync_history(10)

        last = recent[0] if recent else None
        last_at = as_utc(last.timestamp) if last else None
        healthy = last_at is not None and utcnow() - last_at < timedelta(hours=24)
        return {
            "totalVideos": total_videos,
            "totalPlaylists": total_playlists,
            "lastSync": _history_dict(last) if last else None,
            "recentSyncs": [_history_dict(h) for h in recent],
            "health": "healthy" if healthy else "needs-sync",
        }


def _history_dict(entry) -> Dict[str, Any]:
    return {
        "playlistId": entry.playlist_id,
        "playlistName": entry.playlist_name,
        "status": entry.status,
        "trigger": entry.trigger,
        "traceId": entry.trace_id,
        "videosAdded": entry.videos_added,
        "videosUpdated": entry.videos_updated,
        "videosRemoved": entry.videos_removed,
        "duration": entry.duration,
        "error": entry.error,
        "timestamp": as_utc(entry.timestamp).isoformat() if entry.timestamp else None,
    }
