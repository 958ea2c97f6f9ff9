"""
YouTube WebSub Atom feed parsing.

Push payloads carry <entry> elements for new/updated videos and
<at:deleted-entry ref="yt:video:ID"> elements for deleted ones.
"""
from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

NS = {
    "atom": "http://www.w3.org/2005/Atom",
    "yt": "http://www.youtube.com/xml/schemas/2015",
    "at": "http://purl.org/atompub/tombstones/1.0",
}


@dataclass
class FeedEntry:
    video_id: str
    channel_id: Optional[str] = None
    title: Optional[str] = None
    published: Optional[str] = None
    updated: Optional[str] = None
    link: Optional[str] = None


@dataclass
class FeedDelta:
    entries: List[FeedEntry] = field(default_factory=list)
    deleted_video_ids: List[str] = field(default_factory=list)

    @property
    def video_ids(self) -> List[str]:
        return list(dict.fromkeys(e.video_id for e in self.entries))

    @property
    def is_empty(self) -> bool:
        return not self.entries and not self.deleted_video_ids


def _text(element: ET.Element, path: str) -> Optional[str]:
    found = element.find(path, NS)
    if found is None or found.text is None:
        return None
    return found.text.strip()


def parse_feed(body: bytes) -> FeedDelta:
    """Malformed or empty XML yields an empty delta."""
    delta = FeedDelta()
    if not body or not body.strip():
        return delta
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        logger.warning(f"WebSub feed parse error: {e}")
        return delta

    for entry in root.findall("atom:entry", NS):
        video_id = _text(entry, "yt:videoId")
        if not video_id:
            entry_id = _text(entry, "atom:id") or ""
            video_id = entry_id.rsplit(":", 1)[-1] if entry_id else None
        if not video_id:
            continue
        link = entry.find("atom:link", NS)
        delta.entries.append(FeedEntry(
            video_id=video_id,
            channel_id=_text(entry, "yt:channelId"),
            title=_text(entry, "atom:title"),
            published=_text(entry, "atom:published"),
            updated=_text(entry, "atom:updated"),
            link=link.get("href") if link is not None else f"https://www.youtube.com/watch?v={video_id}",
        ))

    for deleted in root.findall("at:deleted-entry", NS):
        ref = deleted.get("ref") or ""
        video_id = ref.rsplit(":", 1)[-1]
        if video_id:
            delta.deleted_video_ids.append(video_id)

    return delta
