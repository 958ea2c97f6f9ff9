"""
VidSync Lease Manager — per-playlist mutual exclusion on the playlists row.

acquire() is a single conditional UPDATE (compare-and-swap): it only matches
when the lease is unset, expired, or already held by the requester, so two
racing callers can never both see rowcount == 1. Leases expire on their own;
release() just frees them early, extend() re-arms a lease mid-sync.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidsync.core.config import get_settings
from vidsync.core.metrics import LEASE_DENIED
from vidsync.models.models import Playlist
from vidsync.services.sync.helpers import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()


class LeaseManager:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def acquire(
        self,
        playlist_id: str,
        requester_id: str,
        duration_ms: Optional[int] = None,
    ) -> bool:
        if duration_ms is None:
            duration_ms = settings.lease_duration_ms
        now = utcnow()
        stmt = (
            update(Playlist)
            .where(
                Playlist.playlist_id == playlist_id,
                or_(
                    Playlist.sync_lease_until.is_(None),
                    Playlist.sync_lease_until <= now,
                    Playlist.sync_lease_owner == requester_id,
                ),
            )
            .values(
                sync_lease_until=now + timedelta(milliseconds=duration_ms),
                sync_lease_owner=requester_id,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
        acquired = result.rowcount == 1
        if not acquired:
            LEASE_DENIED.inc()
            logger.info(f"Lease on playlist {playlist_id} denied to {requester_id}")
        return acquired

    async def extend(self, playlist_id: str, requester_id: str, duration_ms: Optional[int] = None) -> bool:
        """Push the expiry of a lease the requester holds; False once someone else owns it."""
        extended = await self.acquire(playlist_id, requester_id, duration_ms)
        if not extended:
            logger.warning(f"Lease on playlist {playlist_id} could not be extended for {requester_id}")
        return extended

    async def release(self, playlist_id: str, requester_id: str) -> bool:
        stmt = (
            update(Playlist)
            .where(
                Playlist.playlist_id == playlist_id,
                Playlist.sync_lease_owner == requester_id,
            )
            .values(sync_lease_until=None, sync_lease_owner=None)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
        return result.rowcount == 1

    @asynccontextmanager
    async def lease(
        self,
        playlist_id: str,
        requester_id: str,
        duration_ms: Optional[int] = None,
    ) -> AsyncIterator[bool]:
        """Yields whether the lease was granted; releases on exit if it was."""
        acquired = await self.acquire(playlist_id, requester_id, duration_ms)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(playlist_id, requester_id)
