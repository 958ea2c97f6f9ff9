"""
VidSync API Schemas — Pydantic v2 models for request/response validation.

Wire format is camelCase (what the site and the admin dashboard consume);
fields are snake_case in Python and populated by either name.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ═══════════════════════════════════════════════════════════════════════
# Webhook
# ═══════════════════════════════════════════════════════════════════════

class WebhookResponse(CamelModel):
    success: bool = True
    videos_processed: int = Field(0, alias="videosProcessed")
    videos_failed: int = Field(0, alias="videosFailed")
    videos_deleted: int = Field(0, alias="videosDeleted")
    timestamp: datetime


# ═══════════════════════════════════════════════════════════════════════
# Revalidation
# ═══════════════════════════════════════════════════════════════════════

class RevalidateRequest(CamelModel):
    type: Literal["post", "category", "homepage"]
    slug: Optional[str] = None
    path: Optional[str] = None
    categories: List[str] = Field(default_factory=list)


class RevalidateResponse(CamelModel):
    revalidated: bool
    type: str
    paths: List[str]
    tags_purged: int = Field(0, alias="tagsPurged")
    local_keys_cleared: int = Field(0, alias="localKeysCleared")
    failed_layers: List[str] = Field(default_factory=list, alias="failedLayers")


# ═══════════════════════════════════════════════════════════════════════
# Sync
# ═══════════════════════════════════════════════════════════════════════

class SyncTriggerRequest(CamelModel):
    playlist_ids: Optional[List[str]] = Field(None, alias="playlistIds")


class PlaylistSyncSchema(CamelModel):
    playlist_id: str = Field(alias="playlistId")
    status: str
    skipped: bool = False
    videos_added: int = Field(0, alias="videosAdded")
    videos_updated: int = Field(0, alias="videosUpdated")
    videos_removed: int = Field(0, alias="videosRemoved")
    duration: float = 0.0
    errors: List[str] = Field(default_factory=list)


class SyncTriggerResponse(CamelModel):
    trace_id: str = Field(alias="traceId")
    success: bool
    trigger: str
    playlists_synced: int = Field(0, alias="playlistsSynced")
    playlists_skipped: int = Field(0, alias="playlistsSkipped")
    playlists_failed: int = Field(0, alias="playlistsFailed")
    videos_added: int = Field(0, alias="videosAdded")
    videos_updated: int = Field(0, alias="videosUpdated")
    videos_removed: int = Field(0, alias="videosRemoved")
    duration: float = 0.0
    errors: List[str] = Field(default_factory=list)
    playlists: List[PlaylistSyncSchema] = Field(default_factory=list)


class CleanupResponse(CamelModel):
    removed: int


# ═══════════════════════════════════════════════════════════════════════
# Videos
# ═══════════════════════════════════════════════════════════════════════

class VideoSchema(CamelModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    video_id: str = Field(alias="videoId")
    title: str
    published_at: Optional[datetime] = Field(None, alias="publishedAt")
    duration_seconds: int = Field(0, alias="durationSeconds")
    thumbnails: Dict[str, Dict] = Field(default_factory=dict)
    statistics: Dict[str, int] = Field(default_factory=dict)
    is_short: bool = Field(False, alias="isShort")
    tier: str = "standard"
    playlists: List[str] = Field(default_factory=list)


class PlaylistGallerySchema(CamelModel):
    playlist_id: str = Field(alias="playlistId")
    title: str
    slug: Optional[str] = None
    thumbnail_url: Optional[str] = Field(None, alias="thumbnailUrl")
    item_count: int = Field(0, alias="itemCount")
    videos: List[VideoSchema] = Field(default_factory=list)


class GalleryResponse(CamelModel):
    playlists: List[PlaylistGallerySchema]
    shorts: List[VideoSchema] = Field(default_factory=list)
    generated_at: datetime = Field(alias="generatedAt")
