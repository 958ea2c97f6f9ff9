"""
VidSync Playlist Reconciler — bring local playlist state in line with YouTube.

Per playlist:
  1. Fetch the remote page (unless the caller already has it)
  2. Fingerprint it; an unchanged fingerprint skips the apply phase
  3. Load local PlaylistItem rows (tombstones included)
  4-5. Diff into create / resurrect / reposition / tombstone mutations
  6-7. Apply them in one transaction; videos that lose their last
       membership are deleted
  8. Enrich added + updated videos, plus live items an earlier run failed to
     enrich, in batches of 50 (a failing batch makes the run `partial`, never
     `failed`); the lease heartbeat runs between batches
  9. Refresh playlist metadata and item_count; a partial run stores no
     fingerprint so the next run cannot take the fast path
 10. Write exactly one SyncHistory row (success / partial / failed)
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from vidsync.core.config import Settings, get_settings
from vidsync.core.metrics import SYNC_DURATION, SYNC_RUNS
from vidsync.models.models import PlaylistItem, SyncStatus, SyncTrigger
from vidsync.services.sync.helpers import chunked, compute_fingerprint, is_short, utcnow
from vidsync.services.sync.repository import ItemMutation, SyncRepository
from vidsync.services.sync.tiers import calculate_video_tier, engagement_rate
from vidsync.services.youtube.client import RemotePlaylistItem, RemoteVideo, YouTubeClient

logger = logging.getLogger(__name__)


class ReconcileError(Exception):
    """The playlist cannot be reconciled at all (e.g. it is not tracked)."""


@dataclass
class ReconcilePlan:
    mutations: List[ItemMutation] = field(default_factory=list)
    added: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.mutations


@dataclass
class ReconcileResult:
    playlist_id: str
    playlist_name: str = ""
    status: str = SyncStatus.SUCCESS.value
    videos_added: int = 0
    videos_updated: int = 0
    videos_removed: int = 0
    duration: float = 0.0
    fingerprint: Optional[str] = None
    skipped: bool = False
    errors: List[str] = field(default_factory=list)
    changed_video_ids: List[str] = field(default_factory=list)
    retried_video_ids: List[str] = field(default_factory=list)
    deleted_video_ids: List[str] = field(default_factory=list)
    tiers: List[str] = field(default_factory=list)
    has_shorts: bool = False

    @property
    def changed(self) -> bool:
        return bool(
            self.videos_added or self.videos_updated or self.videos_removed or self.retried_video_ids
        )


def dedupe_items(items: Sequence[RemotePlaylistItem]) -> List[RemotePlaylistItem]:
    """Drop repeated video ids, keeping the first occurrence."""
    seen = set()
    unique = []
    for item in items:
        if item.video_id in seen:
            continue
        seen.add(item.video_id)
        unique.append(item)
    return unique


def plan_playlist_diff(
    playlist_id: str,
    remote: Sequence[RemotePlaylistItem],
    existing: Sequence[PlaylistItem],
    now: Optional[datetime] = None,
) -> ReconcilePlan:
    """Pure diff of a remote page against local records; no I/O."""
    now = now or utcnow()
    by_video = {item.video_id: item for item in existing}
    plan = ReconcilePlan()
    seen = set()

    for item in remote:
        seen.add(item.video_id)
        local = by_video.get(item.video_id)
        if local is None:
            plan.added.append(item.video_id)
            plan.mutations.append(ItemMutation(
                "create", playlist_id, item.video_id,
                position=item.position, title=item.title, at=now,
            ))
        elif local.removed_at is not None:
            plan.added.append(item.video_id)
            plan.mutations.append(ItemMutation(
                "resurrect", playlist_id, item.video_id,
                position=item.position, item_id=local.id, at=now,
            ))
        elif local.position != item.position:
            plan.updated.append(item.video_id)
            plan.mutations.append(ItemMutation(
                "reposition", playlist_id, item.video_id,
                position=item.position, item_id=local.id, at=now,
            ))

    for local in existing:
        if local.removed_at is None and local.video_id not in seen:
            plan.removed.append(local.video_id)
            plan.mutations.append(ItemMutation(
                "tombstone", playlist_id, local.video_id, item_id=local.id, at=now,
            ))

    return plan


def video_fields(remote: RemoteVideo, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Column values for a Video row from API detail, with derived short/tier."""
    settings = settings or get_settings()
    short = is_short(remote.duration_seconds, settings.shorts_max_seconds)
    engagement = engagement_rate(remote.view_count, remote.like_count, remote.comment_count)
    return {
        "title": remote.title,
        "description": remote.description,
        "published_at": remote.published_at or utcnow(),
        "channel_id": remote.channel_id,
        "channel_title": remote.channel_title,
        "tags": remote.tags,
        "category_id": remote.category_id,
        "default_language": remote.default_language,
        "duration": remote.duration,
        "duration_seconds": remote.duration_seconds,
        "thumbnails": remote.thumbnails,
        "statistics": remote.statistics,
        "status": remote.status,
        "is_short": short,
        "engagement_rate": engagement,
        "tier": calculate_video_tier(remote.view_count, remote.published_at, short, engagement),
    }


class PlaylistReconciler:
    """Reconciles one playlist per call. Client and session are injected."""

    def __init__(
        self,
        client: YouTubeClient,
        db: AsyncSession,
        *,
        settings: Optional[Settings] = None,
    ):
        self.client = client
        self.db = db
        self.repo = SyncRepository(db)
        self.settings = settings or get_settings()

    async def reconcile(
        self,
        playlist_id: str,
        items: Optional[Sequence[RemotePlaylistItem]] = None,
        trigger: str = SyncTrigger.MANUAL.value,
        trace_id: Optional[str] = None,
        heartbeat: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> ReconcileResult:
        started = time.monotonic()
        playlist = await self.repo.get_playlist(playlist_id)
        if playlist is None:
            raise ReconcileError(f"Playlist {playlist_id} is not tracked")

        result = ReconcileResult(playlist_id=playlist_id, playlist_name=playlist.title)
        previous_fingerprint = playlist.fingerprint
        previous_count = playlist.item_count

        try:
            if items is None:
                items = await self.client.fetch_playlist_items(
                    playlist_id, max_results=self.settings.youtube_page_size
                )
            remote = dedupe_items(items)
            result.fingerprint = compute_fingerprint(remote)
            now = utcnow()

            if previous_fingerprint == result.fingerprint and previous_count == len(remote):
                logger.info(f"Playlist {playlist_id} unchanged (fingerprint match), skipping apply")
                result.skipped = True
                await self.repo.update_playlist(playlist_id, last_fingerprint_at=now, last_synced_at=now)
                await self.db.commit()
            else:
                existing = await self.repo.find_playlist_items(playlist_id)
                plan = plan_playlist_diff(playlist_id, remote, existing, now)
                result.deleted_video_ids = await self.repo.run_transaction(plan.mutations)
                result.videos_added = len(plan.added)
                result.videos_updated = len(plan.updated)
                result.videos_removed = len(plan.removed)
                changed = plan.added + plan.updated
                result.retried_video_ids = [
                    v for v in await self.repo.find_unenriched_video_ids(playlist_id) if v not in changed
                ]
                if result.retried_video_ids:
                    logger.info(
                        f"Retrying enrichment of {len(result.retried_video_ids)} videos in {playlist_id}"
                    )
                result.changed_video_ids = changed + plan.removed + result.retried_video_ids

                await self._enrich(playlist_id, changed + result.retried_video_ids, result, heartbeat)
                await self._update_metadata(
                    playlist_id, len(remote), None if result.errors else result.fingerprint
                )

        except Exception as e:
            await self.db.rollback()
            result.status = SyncStatus.FAILED.value
            result.errors.append(str(e))
            result.duration = time.monotonic() - started
            logger.error(f"Reconcile failed for playlist {playlist_id}: {e}")
            await self._record(result, trigger, trace_id)
            raise

        result.status = SyncStatus.PARTIAL.value if result.errors else SyncStatus.SUCCESS.value
        result.duration = time.monotonic() - started
        await self._record(result, trigger, trace_id)
        logger.info(
            f"Reconciled playlist {playlist_id}: +{result.videos_added} "
            f"~{result.videos_updated} -{result.videos_removed} ({result.status})"
        )
        return result

    # ── Steps ────────────────────────────────────────────────────────────

    async def _enrich(
        self,
        playlist_id: str,
        video_ids: List[str],
        result: ReconcileResult,
        heartbeat: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> None:
        for index, batch in enumerate(chunked(video_ids, self.settings.youtube_details_batch_size)):
            if index and heartbeat is not None and not await heartbeat():
                logger.warning(f"Lease on playlist {playlist_id} was lost during enrichment")
            try:
                details = await self.client.fetch_video_details(batch)
                for remote in details:
                    fields = video_fields(remote, self.settings)
                    await self.repo.upsert_video(remote.video_id, fields)
                    await self.repo.add_membership(remote.video_id, playlist_id)
                    result.tiers.append(fields["tier"])
                    result.has_shorts = result.has_shorts or fields["is_short"]
                await self.db.commit()
                missing = set(batch) - {v.video_id for v in details}
                if missing:
                    logger.info(
                        f"{len(missing)} videos in {playlist_id} returned no detail "
                        f"(private or deleted): {sorted(missing)}"
                    )
            except Exception as e:
                await self.db.rollback()
                message = f"Enrichment failed for {len(batch)} videos ({batch[0]}..): {e}"
                logger.error(message)
                result.errors.append(message)

    async def _update_metadata(self, playlist_id: str, item_count: int, fingerprint: Optional[str]) -> None:
        now = utcnow()
        values: Dict[str, Any] = {
            "item_count": item_count,
            "fingerprint": fingerprint,
            "last_fingerprint_at": now,
            "last_synced_at": now,
        }
        try:
            meta = await self.client.fetch_playlist(playlist_id)
        except Exception as e:
            logger.warning(f"Playlist metadata fetch failed for {playlist_id}: {e}")
            meta = None
        if meta is not None:
            values.update(
                title=meta.title,
                description=meta.description,
                thumbnail_url=meta.thumbnail_url,
                channel_title=meta.channel_title,
            )
        await self.repo.update_playlist(playlist_id, **values)
        await self.db.commit()

    async def _record(self, result: ReconcileResult, trigger: str, trace_id: Optional[str]) -> None:
        await self.repo.create_sync_history(
            playlist_id=result.playlist_id,
            playlist_name=result.playlist_name,
            status=result.status,
            trigger=trigger,
            trace_id=trace_id,
            videos_added=result.videos_added,
            videos_updated=result.videos_updated,
            videos_removed=result.videos_removed,
            duration=round(result.duration, 3),
            error="; ".join(result.errors) or None,
        )
        SYNC_RUNS.labels(status=result.status, trigger=trigger).inc()
        SYNC_DURATION.observe(result.duration)
