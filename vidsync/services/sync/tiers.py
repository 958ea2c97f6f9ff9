"""
Video tier classification from view velocity, age and engagement.

Tiers drive the video:tier:<tier> cache tags and the gallery ordering.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from vidsync.services.sync.helpers import as_utc, utcnow


def engagement_rate(views: int, likes: int, comments: int) -> float:
    """(likes + comments) per hundred views."""
    if not views:
        return 0.0
    return (likes + comments) / views * 100


def calculate_video_tier(
    view_count: int,
    published_at: Optional[datetime],
    is_short: bool,
    engagement: Optional[float] = None,
    now: Optional[datetime] = None,
) -> str:
    now = now or utcnow()
    published = as_utc(published_at) or now
    hours = max(1.0, (now - published).total_seconds() / 3600)
    velocity = view_count / hours

    if is_short:
        if velocity >= 50 or view_count > 10000:
            return "viral-short"
        if velocity >= 20 or view_count > 5000:
            return "popular-short"
        if hours < 48 or view_count > 1000:
            return "trending"
        return "standard"

    if velocity >= 100 or (hours < 24 and view_count > 1000):
        return "hot"
    if velocity >= 50 or (hours < 72 and view_count > 500):
        return "trending"
    if hours < 168 and view_count > 100:
        return "recent"
    if view_count > 50000:
        return "evergreen"

    if engagement and engagement > 5:
        return "trending" if hours < 168 else "evergreen"

    # 30 days
    return "archive" if hours > 720 else "standard"
