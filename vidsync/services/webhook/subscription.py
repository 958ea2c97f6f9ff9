"""
VidSync WebSub Subscriber — keeps the hub subscription for the channel feed alive.

The hub forgets a subscription once its lease runs out (5 days at most), so
renew() is scheduled well inside that window. The hub answers 202 and then
verifies asynchronously against the GET handshake on our callback.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import aiohttp
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidsync.core.config import Settings, get_settings
from vidsync.models.models import WebSubSubscription
from vidsync.services.sync.helpers import utcnow

logger = logging.getLogger(__name__)

TOPIC_URL = "https://www.youtube.com/xml/feeds/videos.xml?channel_id={channel_id}"


@dataclass
class RenewalResult:
    channel_id: str
    success: bool
    status: Optional[int] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "channelId": self.channel_id,
            "success": self.success,
            "status": self.status,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "error": self.error,
        }


class WebSubSubscriber:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    @property
    def callback_url(self) -> Optional[str]:
        if self.settings.websub_callback_url:
            return self.settings.websub_callback_url
        if self.settings.site_base_url:
            return f"{self.settings.site_base_url.rstrip('/')}{self.settings.api_prefix}/youtube-webhook"
        return None

    def form(self, channel_id: str, mode: str = "subscribe") -> dict:
        return {
            "hub.mode": mode,
            "hub.callback": self.callback_url,
            "hub.topic": TOPIC_URL.format(channel_id=channel_id),
            "hub.verify": "async",
            "hub.lease_seconds": str(self.settings.websub_lease_seconds),
            "hub.secret": self.settings.websub_secret or "",
        }

    async def renew(self, channel_id: Optional[str] = None) -> RenewalResult:
        """Re-subscribe and record the outcome. Hub failures are reported, not raised."""
        channel_id = channel_id or self.settings.youtube_channel_id
        if not channel_id or not self.callback_url:
            logger.warning("WebSub renewal skipped: missing youtube_channel_id or callback URL")
            return RenewalResult(channel_id=channel_id or "", success=False, error="not configured")

        result = RenewalResult(channel_id=channel_id, success=False)
        timeout = aiohttp.ClientTimeout(total=self.settings.invalidation_timeout_seconds)
        try:
            async with self.session.post(
                self.settings.websub_hub_url, data=self.form(channel_id), timeout=timeout,
            ) as resp:
                result.status = resp.status
                result.success = 200 <= resp.status < 300
                if not result.success:
                    result.error = f"HTTP {resp.status}"
        except asyncio.TimeoutError:
            result.error = "timeout"
        except aiohttp.ClientError as e:
            result.error = str(e)

        if result.success:
            result.expires_at = utcnow() + timedelta(seconds=self.settings.websub_lease_seconds)
            logger.info(f"WebSub subscription for {channel_id} renewed until {result.expires_at:%Y-%m-%d %H:%M}")
        else:
            logger.error(f"WebSub renewal for {channel_id} failed: {result.error}")
        await self._record(result)
        return result

    async def _record(self, result: RenewalResult) -> None:
        async with self.session_factory() as db:
            row = (await db.execute(
                select(WebSubSubscription).where(WebSubSubscription.channel_id == result.channel_id)
            )).scalar_one_or_none()
            if row is None:
                row = WebSubSubscription(channel_id=result.channel_id, renewal_count=0)
                db.add(row)
            row.callback_url = self.callback_url
            row.status = "active" if result.success else "failed"
            row.last_renewal_at = utcnow()
            row.renewal_count = (row.renewal_count or 0) + 1
            row.last_error = result.error
            if result.expires_at is not None:
                row.expires_at = result.expires_at
            await db.commit()
