"""
VidSync invalidation targets — which site paths, CDN tags and local cache keys
a content change touches.

The category -> section table and the homepage trigger list are data, loaded
from <config_dir>/invalidation.yaml when present.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import yaml

from vidsync.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

DEFAULT_SECTION_MAP: Dict[str, str] = {
    # Main sections
    "bahasa": "berita",
    "leisure": "lifestyle",
    "nation": "news",
    "business": "business",
    "opinion": "opinion",
    "sports": "sports",
    "world": "world",
    # Subcategories
    "tempatan": "berita",
    "pandangan": "berita",
    "dunia": "berita",
    "local-business": "business",
    "world-business": "business",
    "column": "opinion",
    "editorial": "opinion",
    "letters": "opinion",
    "football": "sports",
    "badminton": "sports",
    "motorsports": "sports",
    "tennis": "sports",
    "south-east-asia": "world",
    "simple-stories": "lifestyle",
    "travel": "lifestyle",
    "food": "lifestyle",
    "entertainment": "lifestyle",
    "money": "lifestyle",
    "health": "lifestyle",
    "pets": "lifestyle",
    "tech": "lifestyle",
    "automotive": "lifestyle",
    "property": "lifestyle",
    "sabahsarawak": "news",
    "fmt-worldviews": "opinion",
}

DEFAULT_HOMEPAGE_CATEGORIES: List[str] = [
    "super-highlight", "highlight", "top-news", "nation",
    "super-bm", "top-bm", "bahasa",
    "top-opinion", "opinion", "top-world", "world",
    "top-lifestyle", "leisure", "top-business", "business",
    "top-sports", "sports",
]

BAHASA_SUBSECTIONS = {"tempatan", "pandangan", "dunia"}
_YEAR = re.compile(r"^\d{4}$")


@dataclass
class InvalidationMap:
    section_map: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SECTION_MAP))
    homepage_categories: Set[str] = field(default_factory=lambda: set(DEFAULT_HOMEPAGE_CATEGORIES))

    def section_for(self, category: str) -> str:
        return self.section_map.get(category, category)

    def triggers_homepage(self, categories: Iterable[str]) -> bool:
        return any(c in self.homepage_categories for c in categories)


def load_invalidation_map(config_dir: Optional[str] = None) -> InvalidationMap:
    config_path = Path(config_dir or settings.config_dir) / "invalidation.yaml"
    mapping = InvalidationMap()
    if not config_path.exists():
        return mapping
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if data.get("sections"):
        mapping.section_map.update(data["sections"])
    if data.get("homepage_categories"):
        mapping.homepage_categories = set(data["homepage_categories"])
    logger.info(f"Loaded invalidation map from {config_path}")
    return mapping


# ── Change / targets ─────────────────────────────────────────────────────

@dataclass
class ContentChange:
    """What changed. `kind` is post, category, homepage, video or playlist."""
    kind: str
    slug: Optional[str] = None
    path: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    video_ids: List[str] = field(default_factory=list)
    playlist_ids: List[str] = field(default_factory=list)
    playlist_slugs: List[str] = field(default_factory=list)
    tiers: List[str] = field(default_factory=list)
    has_shorts: bool = False
    homepage: bool = False
    tags: List[str] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)


class _OrderedSet:
    def __init__(self):
        self._items: Dict[str, None] = {}

    def add(self, *values: str) -> None:
        for value in values:
            if value:
                self._items[value] = None

    def __contains__(self, value: str) -> bool:
        return value in self._items

    def to_list(self) -> List[str]:
        return list(self._items)


@dataclass
class InvalidationTargets:
    paths: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    cache_keys: List[str] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.paths or self.tags or self.cache_keys or self.urls)


def normalize_slug(value: Optional[str]) -> str:
    """'/category/nation/2024/x/' -> 'nation/2024/x'"""
    slug = (value or "").strip().strip("/")
    while slug.startswith("category/"):
        slug = slug[len("category/"):]
    return slug.strip("/")


def categories_from_slug(slug: str) -> List[str]:
    parts = [p for p in normalize_slug(slug).split("/") if p]
    if not parts:
        return []
    categories = [parts[0]]
    if parts[0] == "bahasa" and len(parts) > 1 and parts[1] in BAHASA_SUBSECTIONS:
        categories.append(parts[1])
    return categories


def derive_targets(change: ContentChange, mapping: Optional[InvalidationMap] = None) -> InvalidationTargets:
    mapping = mapping or InvalidationMap()
    paths, tags, keys = _OrderedSet(), _OrderedSet(), _OrderedSet()
    homepage = change.homepage

    def add_path(path: str) -> None:
        paths.add(path)
        tags.add(f"path:{path}")

    if change.kind == "post":
        slug = normalize_slug(change.slug or change.path)
        path = change.path if change.path and change.path.startswith("/") else f"/category/{slug}"
        add_path(path)
        tags.add(f"post:{slug}")
        leaf = slug.rsplit("/", 1)[-1]
        if leaf:
            keys.add(f"post:{leaf}", f"post:{leaf}:np")
        categories = change.categories or categories_from_slug(slug)
        homepage = homepage or mapping.triggers_homepage(categories)
        for category in categories:
            if not category or _YEAR.match(category):
                continue
            add_path(f"/category/category/{category}")
            tags.add(f"category:{category}")
            section = mapping.section_for(category)
            if section != category:
                add_path(f"/{section}")
                tags.add(f"section:{section}")

    elif change.kind == "category":
        section = mapping.section_for(normalize_slug(change.slug or change.path))
        if section:
            add_path(f"/{section}")
            tags.add(f"section:{section}")
            keys.add(f"category:{section}")
        homepage = True

    elif change.kind == "homepage":
        homepage = True

    elif change.kind in ("video", "playlist"):
        add_path("/videos")
        tags.add("video:all", "video:gallery")
        keys.add("video:gallery")
        for video_id in change.video_ids:
            add_path(f"/videos/{video_id}")
            tags.add(f"video:{video_id}")
        for playlist_id in change.playlist_ids:
            tags.add(f"playlist:{playlist_id}")
            keys.add(f"playlist:{playlist_id}")
        for slug in change.playlist_slugs:
            add_path(f"/videos/{slug}")
        if change.has_shorts:
            tags.add("video:shorts")
        for tier in change.tiers:
            tags.add(f"video:tier:{tier}")

    else:
        raise ValueError(f"Unsupported change kind: {change.kind}")

    if homepage:
        add_path("/")
        tags.add("homepage", "page:home")
        keys.add("homepage")

    tags.add(*change.tags)
    return InvalidationTargets(
        paths=paths.to_list(),
        tags=tags.to_list(),
        cache_keys=keys.to_list(),
        urls=list(dict.fromkeys(change.urls)),
    )
