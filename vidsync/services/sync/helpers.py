"""
VidSync sync helpers — duration parsing, page fingerprints, small coercions.
"""
from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, List, Optional, Sequence, TypeVar

T = TypeVar("T")

_ISO_DURATION = re.compile(
    r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$", re.IGNORECASE
)


def parse_iso_duration(value: Optional[str]) -> int:
    """'PT1H2M3S' -> 3723. Anything unparseable is 0."""
    if not value:
        return 0
    m = _ISO_DURATION.match(value.strip())
    if not m:
        return 0
    days, hours, minutes, seconds = (int(g or 0) for g in m.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def compute_fingerprint(items: Iterable[Any]) -> str:
    """
    SHA-256 over the ordered (videoId, position) pairs of a playlist page.

    Accepts RemotePlaylistItem objects or raw playlistItems dicts; a missing
    position falls back to the item's index.
    """
    digest = hashlib.sha256()
    for index, item in enumerate(items):
        video_id, position = _id_and_position(item)
        if position is None:
            position = index
        digest.update(f"{video_id}:{position}|".encode("utf-8"))
    return digest.hexdigest()


def _id_and_position(item: Any):
    if isinstance(item, dict):
        video_id = (
            (item.get("contentDetails") or {}).get("videoId")
            or item.get("videoId")
            or item.get("video_id")
            or ""
        )
        position = (item.get("snippet") or {}).get("position", item.get("position"))
        return video_id, position
    return getattr(item, "video_id", "") or "", getattr(item, "position", None)


def to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def chunked(seq: Sequence[T], size: int) -> Iterator[List[T]]:
    for offset in range(0, len(seq), size):
        yield list(seq[offset:offset + size])


def is_short(duration_seconds: int, max_seconds: int = 60) -> bool:
    return 0 < duration_seconds <= max_seconds


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat those as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")
    return slug


async def read_json(resp: Any) -> Any:
    """Body of an aiohttp response as JSON, or {} when it is not JSON (HTML error pages)."""
    try:
        return await resp.json(content_type=None)
    except ValueError:
        return {}
