"""
VidSync ORM Models — mirrored playlist state.

Video rows are shared between playlists; membership lives in the
video_playlists join table so concurrent syncs of different playlists only
ever insert/delete their own rows. PlaylistItem records are tombstoned
(removed_at) rather than deleted so a re-added video resurrects its record.
"""
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Float, Index, Integer, String, Text,
    UniqueConstraint, Uuid, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vidsync.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════

class SyncStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncTrigger(str, enum.Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class VideoType(str, enum.Enum):
    SHORT = "short"
    VIDEO = "video"


# ═══════════════════════════════════════════════════════════════════════
# Content
# ═══════════════════════════════════════════════════════════════════════

class Video(Base):
    __tablename__ = "videos"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    video_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(512), default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    channel_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    channel_title: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list)
    category_id: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    default_language: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    # ISO-8601 ("PT4M13S") as returned by the API, plus parsed seconds
    duration: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)

    # {default, medium, high, standard, maxres} -> {url, width, height}
    thumbnails: Mapped[dict] = mapped_column(JSON, default=dict)
    # {viewCount, likeCount, commentCount}
    statistics: Mapped[dict] = mapped_column(JSON, default=dict)
    # {privacyStatus, embeddable, madeForKids, uploadStatus, license}
    status: Mapped[dict] = mapped_column(JSON, default=dict)

    is_short: Mapped[bool] = mapped_column(Boolean, default=False)
    video_type: Mapped[str] = mapped_column(String(16), default=VideoType.VIDEO.value)
    tier: Mapped[str] = mapped_column(String(32), default="standard")
    engagement_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    memberships: Mapped[List["VideoPlaylist"]] = relationship(
        primaryjoin="Video.video_id == foreign(VideoPlaylist.video_id)",
        viewonly=True,
        lazy="selectin",
    )

    @property
    def playlists(self) -> List[str]:
        return sorted({m.playlist_id for m in self.memberships})

    @property
    def view_count(self) -> int:
        return int((self.statistics or {}).get("viewCount") or 0)


class VideoPlaylist(Base):
    """Membership set: one row per (video, playlist) pair."""
    __tablename__ = "video_playlists"
    __table_args__ = (
        UniqueConstraint("video_id", "playlist_id", name="uq_video_playlist"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[str] = mapped_column(String(32), index=True)
    playlist_id: Mapped[str] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Playlist(Base):
    __tablename__ = "playlists"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    playlist_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(512), default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    slug: Mapped[Optional[str]] = mapped_column(String(256), nullable=True, index=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    channel_title: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    item_count: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    fingerprint: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_fingerprint_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    sync_lease_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_lease_owner: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class PlaylistItem(Base):
    __tablename__ = "playlist_items"
    __table_args__ = (
        UniqueConstraint("playlist_id", "video_id", name="uq_playlist_item"),
        Index("ix_playlist_items_live", "playlist_id", "removed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    playlist_id: Mapped[str] = mapped_column(String(64), index=True)
    video_id: Mapped[str] = mapped_column(String(32), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    title: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    removed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


# ═══════════════════════════════════════════════════════════════════════
# Audit / Channel
# ═══════════════════════════════════════════════════════════════════════

class SyncHistory(Base):
    __tablename__ = "sync_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    playlist_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    playlist_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    status: Mapped[str] = mapped_column(String(16))
    trigger: Mapped[str] = mapped_column(String(16), default=SyncTrigger.MANUAL.value)
    trace_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    videos_added: Mapped[int] = mapped_column(Integer, default=0)
    videos_updated: Mapped[int] = mapped_column(Integer, default=0)
    videos_removed: Mapped[int] = mapped_column(Integer, default=0)
    duration: Mapped[float] = mapped_column(Float, default=0.0)  # seconds
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)


class ChannelInfo(Base):
    __tablename__ = "channel_info"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(256), default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    custom_url: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    subscriber_count: Mapped[int] = mapped_column(Integer, default=0)
    video_count: Mapped[int] = mapped_column(Integer, default=0)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    uploads_playlist_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_fetched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class WebSubStats(Base):
    __tablename__ = "websub_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    webhooks_received: Mapped[int] = mapped_column(Integer, default=0)
    videos_processed: Mapped[int] = mapped_column(Integer, default=0)
    videos_deleted: Mapped[int] = mapped_column(Integer, default=0)
    last_received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class WebSubSubscription(Base):
    """Hub subscription per channel; the hub drops it at expires_at unless renewed."""
    __tablename__ = "websub_subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    callback_url: Mapped[str] = mapped_column(String(1024), default="")
    status: Mapped[str] = mapped_column(String(16), default="pending")  # active | failed
    last_renewal_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    renewal_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
