"""In-memory stand-ins for the YouTube client and aiohttp sessions."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from vidsync.services.sync.helpers import parse_iso_duration
from vidsync.services.youtube.client import (
    RemoteChannel, RemotePlaylist, RemotePlaylistItem, RemoteVideo, YouTubeAPIError,
)


def page(*video_ids: str) -> List[RemotePlaylistItem]:
    return [RemotePlaylistItem(video_id=v, position=i, title=f"Video {v}") for i, v in enumerate(video_ids)]


def remote_video(video_id: str, duration: str = "PT5M", views: int = 100, **kwargs) -> RemoteVideo:
    return RemoteVideo(
        video_id=video_id,
        title=kwargs.pop("title", f"Video {video_id}"),
        published_at=kwargs.pop("published_at", datetime.now(timezone.utc) - timedelta(days=3)),
        channel_id="UC123",
        channel_title="Channel",
        duration=duration,
        duration_seconds=parse_iso_duration(duration),
        view_count=views,
        like_count=kwargs.pop("likes", 5),
        comment_count=kwargs.pop("comments", 1),
        **kwargs,
    )


class FakeYouTubeClient:
    def __init__(self):
        self.pages: Dict[str, List[RemotePlaylistItem]] = {}
        self.videos: Dict[str, RemoteVideo] = {}
        self.members: Dict[str, set] = {}
        self.failing_playlists: set = set()
        self.failing_videos: set = set()
        self.metadata_fails = False
        self.detail_calls: List[List[str]] = []
        self.channel: Optional[RemoteChannel] = None

    def set_page(self, playlist_id: str, *video_ids: str, **video_kwargs) -> None:
        self.pages[playlist_id] = page(*video_ids)
        self.members[playlist_id] = set(video_ids)
        for video_id in video_ids:
            self.videos.setdefault(video_id, remote_video(video_id, **video_kwargs))

    async def fetch_playlist_items(self, playlist_id: str, max_results: int = 50):
        if playlist_id in self.failing_playlists:
            raise YouTubeAPIError(503, "backendError")
        return list(self.pages.get(playlist_id, []))

    async def fetch_video_details(self, video_ids):
        self.detail_calls.append(list(video_ids))
        if self.failing_videos.intersection(video_ids):
            raise YouTubeAPIError(500, "backendError")
        return [self.videos[v] for v in video_ids if v in self.videos]

    async def fetch_playlist(self, playlist_id: str):
        if self.metadata_fails:
            raise YouTubeAPIError(500, "backendError")
        return RemotePlaylist(
            playlist_id=playlist_id,
            title=f"Remote {playlist_id}",
            description="desc",
            thumbnail_url="https://i.ytimg.com/pl.jpg",
            channel_title="Channel",
            item_count=len(self.pages.get(playlist_id, [])),
        )

    async def fetch_channel(self, channel_id: str):
        return self.channel

    async def playlist_contains(self, playlist_id: str, video_id: str) -> bool:
        return video_id in self.members.get(playlist_id, set())

    async def close(self):
        pass


class FakeResponse:
    def __init__(self, status: int = 200, payload=None, error: Optional[BaseException] = None):
        self.status = status
        self._payload = payload if payload is not None else {"success": True}
        self._error = error

    async def json(self, content_type=None):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    async def __aenter__(self):
        if self._error is not None:
            raise self._error
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeHTTPSession:
    """Records POSTs; `responder(url, json)` decides the FakeResponse."""

    def __init__(self, responder=None):
        self.calls: List[dict] = []
        self.responder = responder or (lambda url, body: FakeResponse())

    def post(self, url, json=None, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "data": data, "headers": headers or {}, "timeout": timeout})
        return self.responder(url, json if json is not None else data)
