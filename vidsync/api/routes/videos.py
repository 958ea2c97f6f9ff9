"""
VidSync API — Video gallery read model (served from the in-process LRU).
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vidsync.core.database import get_db
from vidsync.models.models import Playlist, PlaylistItem, Video
from vidsync.schemas.schemas import GalleryResponse, PlaylistGallerySchema, VideoSchema
from vidsync.services.cache.local_cache import playlist_cache, video_cache
from vidsync.services.sync.helpers import utcnow

router = APIRouter(prefix="/videos", tags=["Videos"])

GALLERY_KEY = "video:gallery"


async def _playlist_videos(db: AsyncSession, playlist_id: str, limit: int) -> List[Video]:
    result = await db.execute(
        select(Video)
        .join(PlaylistItem, PlaylistItem.video_id == Video.video_id)
        .where(PlaylistItem.playlist_id == playlist_id, PlaylistItem.removed_at.is_(None))
        .order_by(PlaylistItem.position)
        .limit(limit)
    )
    return list(result.scalars().all())


@router.get("/gallery", response_model=GalleryResponse)
async def gallery(
    per_playlist: int = Query(12, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Active playlists with their first videos, plus the latest shorts."""
    cached = video_cache.get(GALLERY_KEY)
    if cached is not None:
        return cached

    playlists = (await db.execute(
        select(Playlist).where(Playlist.is_active.is_(True)).order_by(Playlist.title)
    )).scalars().all()

    sections = []
    for playlist in playlists:
        videos = await _playlist_videos(db, playlist.playlist_id, per_playlist)
        sections.append(PlaylistGallerySchema(
            playlist_id=playlist.playlist_id,
            title=playlist.title,
            slug=playlist.slug,
            thumbnail_url=playlist.thumbnail_url,
            item_count=playlist.item_count,
            videos=[VideoSchema.model_validate(v) for v in videos],
        ))

    shorts = (await db.execute(
        select(Video).where(Video.is_short.is_(True)).order_by(Video.published_at.desc()).limit(per_playlist)
    )).scalars().all()

    response = GalleryResponse(
        playlists=sections,
        shorts=[VideoSchema.model_validate(v) for v in shorts],
        generated_at=utcnow(),
    )
    video_cache.set(GALLERY_KEY, response)
    return response


@router.get("/playlists/{playlist_id}", response_model=PlaylistGallerySchema)
async def playlist_detail(
    playlist_id: str,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    key = f"playlist:{playlist_id}"
    cached = playlist_cache.get(key)
    if cached is not None:
        return cached

    playlist = (await db.execute(
        select(Playlist).where(Playlist.playlist_id == playlist_id)
    )).scalar_one_or_none()
    if playlist is None:
        raise HTTPException(status_code=404, detail="Playlist not found")

    videos = await _playlist_videos(db, playlist_id, limit)
    response = PlaylistGallerySchema(
        playlist_id=playlist.playlist_id,
        title=playlist.title,
        slug=playlist.slug,
        thumbnail_url=playlist.thumbnail_url,
        item_count=playlist.item_count,
        videos=[VideoSchema.model_validate(v) for v in videos],
    )
    playlist_cache.set(key, response)
    return response
