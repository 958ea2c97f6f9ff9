"""
VidSync Sync Repository — persistence operations the sync core needs.

  - find_video_by_video_id / upsert_video / delete_video
  - find_playlist_items / find_unenriched_video_ids / create_playlist_item /
    update_playlist_item
  - run_transaction(mutations): apply a reconcile plan atomically
  - update_playlist / create_sync_history
  - add_membership / remove_membership: idempotent set add/remove
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from vidsync.models.models import (
    ChannelInfo, Playlist, PlaylistItem, SyncHistory, Video, VideoPlaylist, VideoType, WebSubStats,
)
from vidsync.services.sync.helpers import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ItemMutation:
    """One planned change to a PlaylistItem row."""
    action: str  # "create" | "resurrect" | "reposition" | "tombstone"
    playlist_id: str
    video_id: str
    position: int = 0
    title: str = ""
    item_id: Any = None
    at: Optional[datetime] = None


class SyncRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Videos ───────────────────────────────────────────────────────────

    async def find_video_by_video_id(self, video_id: str) -> Optional[Video]:
        result = await self.db.execute(select(Video).where(Video.video_id == video_id))
        return result.scalar_one_or_none()

    async def upsert_video(self, video_id: str, fields: Dict[str, Any]) -> Video:
        """Create or update by external id; bumps sync_version. Does not commit."""
        video = await self.find_video_by_video_id(video_id)
        if video is None:
            video = Video(video_id=video_id, sync_version=0)
            self.db.add(video)
        for key, value in fields.items():
            setattr(video, key, value)
        video.video_type = VideoType.SHORT.value if video.is_short else VideoType.VIDEO.value
        video.sync_version = (video.sync_version or 0) + 1
        video.last_synced_at = utcnow()
        await self.db.flush()
        return video

    async def videos_due_for_refresh(
        self, published_after: datetime, synced_before: datetime, limit: int = 50
    ) -> List[str]:
        """Recently published videos first, then ones not synced for a while."""
        recent = await self.db.execute(
            select(Video.video_id)
            .where(Video.published_at >= published_after)
            .order_by(Video.published_at.desc())
            .limit(limit)
        )
        stale = await self.db.execute(
            select(Video.video_id)
            .where(Video.last_synced_at < synced_before)
            .order_by(Video.last_synced_at)
            .limit(limit)
        )
        return list(dict.fromkeys(list(recent.scalars()) + list(stale.scalars())))

    async def delete_video(self, video_id: str) -> None:
        await self.db.execute(delete(Video).where(Video.video_id == video_id))

    async def delete_orphaned_videos(self) -> int:
        has_membership = select(VideoPlaylist.id).where(VideoPlaylist.video_id == Video.video_id).exists()
        result = await self.db.execute(delete(Video).where(~has_membership))
        return result.rowcount or 0

    # ── Membership ───────────────────────────────────────────────────────

    async def add_membership(self, video_id: str, playlist_id: str) -> None:
        """Insert-if-absent; concurrent adders never conflict."""
        insert = pg_insert if self.db.bind.dialect.name == "postgresql" else sqlite_insert
        stmt = insert(VideoPlaylist).values(
            video_id=video_id, playlist_id=playlist_id
        ).on_conflict_do_nothing(index_elements=["video_id", "playlist_id"])
        await self.db.execute(stmt)

    async def remove_membership(self, video_id: str, playlist_id: str) -> None:
        await self.db.execute(
            delete(VideoPlaylist).where(
                VideoPlaylist.video_id == video_id,
                VideoPlaylist.playlist_id == playlist_id,
            )
        )

    async def membership_count(self, video_id: str) -> int:
        return await self.db.scalar(
            select(func.count(VideoPlaylist.id)).where(VideoPlaylist.video_id == video_id)
        ) or 0

    async def memberships_for(self, video_id: str) -> List[str]:
        result = await self.db.execute(
            select(VideoPlaylist.playlist_id).where(VideoPlaylist.video_id == video_id)
        )
        return list(result.scalars().all())

    # ── Playlist items ───────────────────────────────────────────────────

    async def find_playlist_items(self, playlist_id: str) -> List[PlaylistItem]:
        """All records for a playlist, tombstoned ones included."""
        result = await self.db.execute(
            select(PlaylistItem).where(PlaylistItem.playlist_id == playlist_id)
        )
        return list(result.scalars().all())

    async def live_playlist_items_for_video(self, video_id: str) -> List[PlaylistItem]:
        result = await self.db.execute(
            select(PlaylistItem).where(
                PlaylistItem.video_id == video_id,
                PlaylistItem.removed_at.is_(None),
            )
        )
        return list(result.scalars().all())

    async def find_unenriched_video_ids(self, playlist_id: str) -> List[str]:
        """Live items of the playlist whose video has no Video row yet (enrichment never landed)."""
        has_video = select(Video.id).where(Video.video_id == PlaylistItem.video_id).exists()
        result = await self.db.execute(
            select(PlaylistItem.video_id)
            .where(
                PlaylistItem.playlist_id == playlist_id,
                PlaylistItem.removed_at.is_(None),
                ~has_video,
            )
            .order_by(PlaylistItem.position)
        )
        return list(result.scalars().all())

    async def create_playlist_item(self, mutation: ItemMutation) -> None:
        self.db.add(PlaylistItem(
            playlist_id=mutation.playlist_id,
            video_id=mutation.video_id,
            position=mutation.position,
            title=mutation.title,
            added_at=mutation.at or utcnow(),
            removed_at=None,
        ))

    async def update_playlist_item(self, item_id: Any, **values: Any) -> None:
        await self.db.execute(
            update(PlaylistItem).where(PlaylistItem.id == item_id).values(**values)
        )

    async def apply_mutation(self, mutation: ItemMutation) -> None:
        at = mutation.at or utcnow()
        if mutation.action == "create":
            await self.create_playlist_item(mutation)
            await self.add_membership(mutation.video_id, mutation.playlist_id)
        elif mutation.action == "resurrect":
            await self.update_playlist_item(
                mutation.item_id, position=mutation.position, removed_at=None, added_at=at
            )
            await self.add_membership(mutation.video_id, mutation.playlist_id)
        elif mutation.action == "reposition":
            await self.update_playlist_item(mutation.item_id, position=mutation.position)
        elif mutation.action == "tombstone":
            await self.update_playlist_item(mutation.item_id, removed_at=at)
            await self.remove_membership(mutation.video_id, mutation.playlist_id)
        else:
            raise ValueError(f"Unknown playlist item mutation: {mutation.action}")

    async def run_transaction(self, mutations: Sequence[ItemMutation]) -> List[str]:
        """
        Apply every mutation and commit once; any failure rolls back all of them.

        Returns the video ids deleted because their last membership went away.
        """
        deleted: List[str] = []
        try:
            for mutation in mutations:
                await self.apply_mutation(mutation)
            await self.db.flush()
            for mutation in mutations:
                if mutation.action != "tombstone":
                    continue
                if await self.membership_count(mutation.video_id) == 0:
                    await self.delete_video(mutation.video_id)
                    deleted.append(mutation.video_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return deleted

    # ── Playlists ────────────────────────────────────────────────────────

    async def get_playlist(self, playlist_id: str) -> Optional[Playlist]:
        result = await self.db.execute(select(Playlist).where(Playlist.playlist_id == playlist_id))
        return result.scalar_one_or_none()

    async def list_active_playlists(self, playlist_ids: Optional[Iterable[str]] = None) -> List[Playlist]:
        query = select(Playlist).where(Playlist.is_active.is_(True)).order_by(Playlist.title)
        if playlist_ids:
            query = query.where(Playlist.playlist_id.in_(list(playlist_ids)))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def update_playlist(self, playlist_id: str, **values: Any) -> None:
        await self.db.execute(
            update(Playlist).where(Playlist.playlist_id == playlist_id).values(**values)
        )

    # ── History / stats ──────────────────────────────────────────────────

    async def create_sync_history(self, **values: Any) -> SyncHistory:
        entry = SyncHistory(**values)
        self.db.add(entry)
        await self.db.commit()
        return entry

    async def recent_sync_history(self, limit: int = 10) -> List[SyncHistory]:
        result = await self.db.execute(
            select(SyncHistory).order_by(SyncHistory.timestamp.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def upsert_channel_info(self, channel_id: str, **values: Any) -> ChannelInfo:
        result = await self.db.execute(select(ChannelInfo).where(ChannelInfo.channel_id == channel_id))
        info = result.scalar_one_or_none()
        if info is None:
            info = ChannelInfo(channel_id=channel_id)
            self.db.add(info)
        for key, value in values.items():
            setattr(info, key, value)
        await self.db.commit()
        return info

    async def record_websub(self, processed: int, deleted: int) -> None:
        stats = await self.db.get(WebSubStats, 1)
        if stats is None:
            stats = WebSubStats(id=1, webhooks_received=0, videos_processed=0, videos_deleted=0)
            self.db.add(stats)
        stats.webhooks_received = (stats.webhooks_received or 0) + 1
        stats.videos_processed = (stats.videos_processed or 0) + processed
        stats.videos_deleted = (stats.videos_deleted or 0) + deleted
        stats.last_received_at = utcnow()
        await self.db.commit()
