"""
VidSync YouTube Client — YouTube Data API v3 over aiohttp.

Endpoints used:
  - playlistItems.list  (paginated via nextPageToken; videoId filter for membership checks)
  - videos.list         (<= 50 ids per call)
  - playlists.list
  - channels.list       (snippet, statistics, uploads playlist id)

Retry policy (tenacity): 429, 5xx and quota/rate 403s are retried up to
`max_attempts` times in total with min(base * 2^(n-1), cap) +/- jitter between
attempts. Anything else, or the last failure, propagates as YouTubeAPIError.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import aiohttp
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from vidsync.core.config import get_settings
from vidsync.core.metrics import YOUTUBE_RETRIES
from vidsync.services.sync.helpers import chunked, parse_iso_duration, parse_timestamp, read_json, to_int

logger = logging.getLogger(__name__)
settings = get_settings()

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
QUOTA_REASONS = {"quotaExceeded", "rateLimitExceeded", "userRateLimitExceeded", "dailyLimitExceeded"}
THUMBNAIL_TIERS = ("default", "medium", "high", "standard", "maxres")
MAX_IDS_PER_CALL = 50


class YouTubeAPIError(Exception):
    """Non-2xx answer (or transport failure) from the Data API."""

    def __init__(self, status: int, reason: str = "", message: str = ""):
        self.status = status
        self.reason = reason
        super().__init__(message or f"YouTube API error {status} ({reason or 'unknown'})")

    @property
    def retryable(self) -> bool:
        if self.status in RETRYABLE_STATUSES:
            return True
        return self.status == 403 and self.reason in QUOTA_REASONS

    @classmethod
    def from_payload(cls, status: int, payload: Any) -> "YouTubeAPIError":
        reason, message = "", ""
        if isinstance(payload, dict):
            error = payload.get("error") or {}
            message = error.get("message", "")
            errors = error.get("errors") or []
            if errors:
                reason = errors[0].get("reason", "")
        return cls(status, reason, message)


# ── Remote data ──────────────────────────────────────────────────────────

@dataclass
class RemotePlaylistItem:
    video_id: str
    position: int
    title: str = ""


@dataclass
class RemoteVideo:
    video_id: str
    title: str = ""
    description: str = ""
    published_at: Optional[datetime] = None
    channel_id: str = ""
    channel_title: str = ""
    tags: List[str] = field(default_factory=list)
    category_id: str = ""
    default_language: str = ""
    duration: str = "PT0S"
    duration_seconds: int = 0
    thumbnails: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    status: Dict[str, Any] = field(default_factory=dict)

    @property
    def statistics(self) -> Dict[str, int]:
        return {
            "viewCount": self.view_count,
            "likeCount": self.like_count,
            "commentCount": self.comment_count,
        }


@dataclass
class RemotePlaylist:
    playlist_id: str
    title: str = ""
    description: str = ""
    thumbnail_url: Optional[str] = None
    channel_title: str = ""
    item_count: int = 0


@dataclass
class RemoteChannel:
    channel_id: str
    title: str = ""
    description: str = ""
    custom_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    subscriber_count: int = 0
    video_count: int = 0
    view_count: int = 0
    uploads_playlist_id: Optional[str] = None


# ── Client ───────────────────────────────────────────────────────────────

class YouTubeClient:
    """Injectable Data API client. Use as `async with YouTubeClient(...) as yt:`."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        jitter: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api_key = api_key if api_key is not None else settings.youtube_api_key
        self.base_url = (base_url or settings.youtube_api_base).rstrip("/")
        self.timeout = timeout or settings.youtube_request_timeout
        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.base_delay = base_delay if base_delay is not None else settings.retry_base_delay_ms / 1000
        self.max_delay = max_delay if max_delay is not None else settings.retry_max_delay_ms / 1000
        self.jitter = jitter if jitter is not None else settings.retry_jitter
        self._sleep = sleep
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "YouTubeClient":
        self._ensure_session()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    # ── Transport ────────────────────────────────────────────────────────

    def backoff_delay(self, attempt: int) -> float:
        """Delay (seconds) after the given 1-based failed attempt."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay * (1 + random.uniform(-self.jitter, self.jitter))

    def _wait(self, retry_state) -> float:
        return self.backoff_delay(retry_state.attempt_number)

    @staticmethod
    def _should_retry(exc: BaseException) -> bool:
        if isinstance(exc, YouTubeAPIError):
            return exc.retryable
        return isinstance(exc, (aiohttp.ClientConnectionError, asyncio.TimeoutError))

    def _before_sleep(self, retry_state) -> None:
        exc = retry_state.outcome.exception()
        status = getattr(exc, "status", "network")
        YOUTUBE_RETRIES.labels(status=str(status)).inc()
        logger.warning(
            f"YouTube request failed (attempt {retry_state.attempt_number}/"
            f"{self.max_attempts}): {exc}; retrying"
        )

    async def _get(self, resource: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET with the retry policy applied."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(self._should_retry),
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=self._before_sleep,
            reraise=True,
        ):
            with attempt:
                return await self._request(resource, params)
        raise AssertionError("unreachable")

    async def _request(self, resource: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """One raw API call. Raises YouTubeAPIError on non-2xx."""
        session = self._ensure_session()
        query = {k: v for k, v in params.items() if v is not None}
        query["key"] = self.api_key
        async with session.get(f"{self.base_url}/{resource}", params=query) as resp:
            if resp.status >= 400:
                raise YouTubeAPIError.from_payload(resp.status, await read_json(resp))
            return await resp.json(content_type=None) or {}

    # ── Playlist items ───────────────────────────────────────────────────

    async def fetch_playlist_items(
        self, playlist_id: str, max_results: int = 50
    ) -> List[RemotePlaylistItem]:
        """All items of a playlist in remote order, following nextPageToken."""
        items: List[RemotePlaylistItem] = []
        page_token: Optional[str] = None
        while True:
            data = await self._get("playlistItems", {
                "part": "snippet,contentDetails",
                "playlistId": playlist_id,
                "maxResults": min(max_results, MAX_IDS_PER_CALL),
                "pageToken": page_token,
            })
            for raw in data.get("items") or []:
                item = self._parse_playlist_item(raw, len(items))
                if item is not None:
                    items.append(item)
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        logger.debug(f"Fetched {len(items)} items for playlist {playlist_id}")
        return items

    async def playlist_contains(self, playlist_id: str, video_id: str) -> bool:
        data = await self._get("playlistItems", {
            "part": "id",
            "playlistId": playlist_id,
            "videoId": video_id,
            "maxResults": 1,
        })
        return bool(data.get("items"))

    @staticmethod
    def _parse_playlist_item(raw: Dict[str, Any], index: int) -> Optional[RemotePlaylistItem]:
        snippet = raw.get("snippet") or {}
        details = raw.get("contentDetails") or {}
        video_id = details.get("videoId") or (snippet.get("resourceId") or {}).get("videoId")
        if not video_id:
            return None
        position = snippet.get("position")
        return RemotePlaylistItem(
            video_id=video_id,
            position=int(position) if position is not None else index,
            title=snippet.get("title") or "",
        )

    # ── Videos ───────────────────────────────────────────────────────────

    async def fetch_video_details(self, video_ids: Sequence[str]) -> List[RemoteVideo]:
        """Full metadata for the given ids, 50 per request, sequentially."""
        unique_ids = list(dict.fromkeys(v for v in video_ids if v))
        videos: List[RemoteVideo] = []
        for batch in chunked(unique_ids, MAX_IDS_PER_CALL):
            data = await self._get("videos", {
                "part": "snippet,contentDetails,statistics,status",
                "id": ",".join(batch),
                "maxResults": MAX_IDS_PER_CALL,
            })
            videos.extend(self._parse_video(raw) for raw in data.get("items") or [] if raw.get("id"))
        return videos

    @staticmethod
    def _parse_video(raw: Dict[str, Any]) -> RemoteVideo:
        snippet = raw.get("snippet") or {}
        details = raw.get("contentDetails") or {}
        stats = raw.get("statistics") or {}
        status = raw.get("status") or {}
        duration = details.get("duration") or "PT0S"
        return RemoteVideo(
            video_id=raw["id"],
            title=snippet.get("title") or "",
            description=snippet.get("description") or "",
            published_at=parse_timestamp(snippet.get("publishedAt")),
            channel_id=snippet.get("channelId") or "",
            channel_title=snippet.get("channelTitle") or "",
            tags=list(snippet.get("tags") or []),
            category_id=snippet.get("categoryId") or "",
            default_language=snippet.get("defaultLanguage") or "",
            duration=duration,
            duration_seconds=parse_iso_duration(duration),
            thumbnails=_thumbnail_set(snippet.get("thumbnails") or {}),
            view_count=to_int(stats.get("viewCount")),
            like_count=to_int(stats.get("likeCount")),
            comment_count=to_int(stats.get("commentCount")),
            status={
                "privacyStatus": status.get("privacyStatus") or "public",
                "embeddable": bool(status.get("embeddable")),
                "madeForKids": bool(status.get("madeForKids")),
                "uploadStatus": status.get("uploadStatus") or "",
                "license": status.get("license") or "",
            },
        )

    # ── Playlists / Channels ─────────────────────────────────────────────

    async def fetch_playlist(self, playlist_id: str) -> Optional[RemotePlaylist]:
        data = await self._get("playlists", {
            "part": "snippet,contentDetails",
            "id": playlist_id,
        })
        items = data.get("items") or []
        if not items:
            return None
        snippet = items[0].get("snippet") or {}
        thumbs = _thumbnail_set(snippet.get("thumbnails") or {})
        return RemotePlaylist(
            playlist_id=playlist_id,
            title=snippet.get("title") or "",
            description=snippet.get("description") or "",
            thumbnail_url=(thumbs.get("high") or {}).get("url"),
            channel_title=snippet.get("channelTitle") or "",
            item_count=to_int((items[0].get("contentDetails") or {}).get("itemCount")),
        )

    async def fetch_channel(self, channel_id: str) -> Optional[RemoteChannel]:
        data = await self._get("channels", {
            "part": "snippet,statistics,contentDetails",
            "id": channel_id,
        })
        items = data.get("items") or []
        if not items:
            return None
        raw = items[0]
        snippet = raw.get("snippet") or {}
        stats = raw.get("statistics") or {}
        related = (raw.get("contentDetails") or {}).get("relatedPlaylists") or {}
        return RemoteChannel(
            channel_id=channel_id,
            title=snippet.get("title") or "",
            description=snippet.get("description") or "",
            custom_url=snippet.get("customUrl"),
            thumbnail_url=((snippet.get("thumbnails") or {}).get("high") or {}).get("url"),
            subscriber_count=to_int(stats.get("subscriberCount")),
            video_count=to_int(stats.get("videoCount")),
            view_count=to_int(stats.get("viewCount")),
            uploads_playlist_id=related.get("uploads"),
        )

    async def fetch_uploads_playlist_id(self, channel_id: str) -> Optional[str]:
        channel = await self.fetch_channel(channel_id)
        return channel.uploads_playlist_id if channel else None


def _thumbnail_set(thumbs: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Fill missing resolution tiers from the next lower available tier."""
    result: Dict[str, Dict[str, Any]] = {}
    previous: Dict[str, Any] = {}
    for tier in THUMBNAIL_TIERS:
        current = thumbs.get(tier) or previous
        if current:
            result[tier] = dict(current)
        previous = current
    return result
