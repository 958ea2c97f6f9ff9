"""
VidSync WebSub Handler — push notifications from YouTube.

received -> rejected                 (bad/missing signature; nothing touched)
         -> verified -> noop         (feed has no entries)
                     -> completed    (entries processed, caches invalidated)

Per video: fetch detail, check every active playlist for membership, classify
short vs. regular, compute tier, upsert. One video failing never stops the rest.
"""
from __future__ import annotations

import enum
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from vidsync.core.config import Settings, get_settings
from vidsync.core.metrics import WEBHOOK_REQUESTS
from vidsync.services.cache.dispatcher import ChangeNotificationDispatcher, DispatchReport
from vidsync.services.cache.paths import ContentChange
from vidsync.services.sync.helpers import utcnow
from vidsync.services.sync.reconciler import video_fields
from vidsync.services.sync.repository import SyncRepository
from vidsync.services.webhook.feed import FeedDelta, parse_feed
from vidsync.services.youtube.client import YouTubeClient

logger = logging.getLogger(__name__)

SIGNATURE_ALGORITHMS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha384": hashlib.sha384,
    "sha512": hashlib.sha512,
}


class WebhookState(str, enum.Enum):
    RECEIVED = "received"
    REJECTED = "rejected"
    VERIFIED = "verified"
    NOOP = "noop"
    COMPLETED = "completed"


@dataclass
class WebhookOutcome:
    state: WebhookState
    videos_processed: int = 0
    videos_failed: int = 0
    videos_deleted: int = 0
    timestamp: datetime = field(default_factory=utcnow)
    errors: List[str] = field(default_factory=list)
    dispatch: Optional[DispatchReport] = None


def verify_signature(raw_body: bytes, header: Optional[str], secret: Optional[str]) -> bool:
    """Check an `algorithm=hexdigest` header against HMAC(secret, raw_body)."""
    if not secret or not header or "=" not in header:
        return False
    algorithm, _, received = header.partition("=")
    digestmod = SIGNATURE_ALGORITHMS.get(algorithm.strip().lower())
    if digestmod is None:
        return False
    expected = hmac.new(secret.encode("utf-8"), raw_body, digestmod).hexdigest()
    return hmac.compare_digest(expected, received.strip().lower())


class WebhookHandler:
    def __init__(
        self,
        client: YouTubeClient,
        db: AsyncSession,
        dispatcher: ChangeNotificationDispatcher,
        *,
        secret: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        self.client = client
        self.db = db
        self.repo = SyncRepository(db)
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self.secret = secret if secret is not None else self.settings.websub_secret

    async def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
        if not verify_signature(raw_body, signature, self.secret):
            logger.warning("WebSub notification rejected: invalid signature")
            WEBHOOK_REQUESTS.labels(state=WebhookState.REJECTED.value).inc()
            return WebhookOutcome(state=WebhookState.REJECTED)

        delta = parse_feed(raw_body)
        if delta.is_empty:
            WEBHOOK_REQUESTS.labels(state=WebhookState.NOOP.value).inc()
            return WebhookOutcome(state=WebhookState.NOOP)

        outcome = await self._process(delta)
        WEBHOOK_REQUESTS.labels(state=outcome.state.value).inc()
        return outcome

    async def _process(self, delta: FeedDelta) -> WebhookOutcome:
        outcome = WebhookOutcome(state=WebhookState.VERIFIED)
        change = ContentChange(kind="video")
        # plain tuples: ORM rows expire on rollback
        playlists = [(p.playlist_id, p.slug) for p in await self.repo.list_active_playlists()]

        for video_id in delta.video_ids:
            try:
                member_of = await self._ingest_video(video_id, playlists, change)
                if member_of is None:
                    continue
                outcome.videos_processed += 1
                logger.info(f"WebSub processed {video_id} (playlists={member_of})")
            except Exception as e:
                await self.db.rollback()
                outcome.videos_failed += 1
                outcome.errors.append(f"{video_id}: {e}")
                logger.error(f"WebSub failed to process video {video_id}: {e}")

        for video_id in delta.deleted_video_ids:
            try:
                playlist_ids = await self._remove_video(video_id)
                outcome.videos_deleted += 1
                change.video_ids.append(video_id)
                change.playlist_ids.extend(playlist_ids)
            except Exception as e:
                await self.db.rollback()
                outcome.videos_failed += 1
                outcome.errors.append(f"{video_id}: {e}")
                logger.error(f"WebSub failed to remove video {video_id}: {e}")

        if change.video_ids:
            change.playlist_ids = list(dict.fromkeys(change.playlist_ids))
            outcome.dispatch = await self.dispatcher.dispatch(change)

        await self.repo.record_websub(outcome.videos_processed, outcome.videos_deleted)
        outcome.state = WebhookState.COMPLETED
        return outcome

    async def _ingest_video(
        self, video_id: str, playlists: List[Tuple[str, Optional[str]]], change: ContentChange
    ) -> Optional[List[str]]:
        """Upsert one video; returns the playlists it belongs to, None if unavailable."""
        details = await self.client.fetch_video_details([video_id])
        if not details:
            logger.warning(f"WebSub: no details for {video_id} (private or removed)")
            return None
        remote = details[0]

        member_of = []
        for playlist_id, _ in playlists:
            try:
                if await self.client.playlist_contains(playlist_id, video_id):
                    member_of.append(playlist_id)
            except Exception as e:
                logger.warning(f"Membership check {playlist_id}/{video_id} failed: {e}")

        fields = video_fields(remote, self.settings)
        await self.repo.upsert_video(video_id, fields)
        for playlist_id in member_of:
            await self.repo.add_membership(video_id, playlist_id)
        await self.db.commit()

        change.video_ids.append(video_id)
        change.playlist_ids.extend(member_of)
        change.playlist_slugs.extend(slug for pid, slug in playlists if pid in member_of and slug)
        change.tiers.append(fields["tier"])
        change.has_shorts = change.has_shorts or fields["is_short"]
        return member_of

    async def _remove_video(self, video_id: str) -> List[str]:
        """Tombstone live items, drop memberships, delete the row."""
        now = utcnow()
        items = await self.repo.live_playlist_items_for_video(video_id)
        for item in items:
            await self.repo.update_playlist_item(item.id, removed_at=now)
        playlist_ids = await self.repo.memberships_for(video_id)
        for playlist_id in playlist_ids:
            await self.repo.remove_membership(video_id, playlist_id)
        await self.repo.delete_video(video_id)
        await self.db.commit()
        logger.info(f"WebSub removed deleted video {video_id}")
        return playlist_ids
