from datetime import datetime, timedelta, timezone

import pytest

from vidsync.services.sync.helpers import (
    chunked, compute_fingerprint, is_short, parse_iso_duration, slugify, to_int,
)
from vidsync.services.sync.tiers import calculate_video_tier, engagement_rate
from vidsync.services.youtube.client import RemotePlaylistItem


@pytest.mark.parametrize("value,expected", [
    ("PT4M13S", 253),
    ("PT1H", 3600),
    ("PT1H2M3S", 3723),
    ("PT45S", 45),
    ("P1DT1S", 86401),
    ("PT0S", 0),
    ("", 0),
    (None, 0),
    ("garbage", 0),
])
def test_parse_iso_duration(value, expected):
    assert parse_iso_duration(value) == expected


def _items(*pairs):
    return [RemotePlaylistItem(video_id=v, position=p) for v, p in pairs]


def test_fingerprint_is_stable():
    items = _items(("A", 0), ("B", 1))
    assert compute_fingerprint(items) == compute_fingerprint(_items(("A", 0), ("B", 1)))


def test_fingerprint_changes_on_reorder_and_append():
    base = compute_fingerprint(_items(("A", 0), ("B", 1)))
    assert compute_fingerprint(_items(("B", 0), ("A", 1))) != base
    assert compute_fingerprint(_items(("A", 0), ("B", 1), ("C", 2))) != base


def test_fingerprint_accepts_raw_api_items_and_defaults_position_to_index():
    raw = [
        {"contentDetails": {"videoId": "A"}, "snippet": {"position": 0}},
        {"contentDetails": {"videoId": "B"}, "snippet": {}},
    ]
    assert compute_fingerprint(raw) == compute_fingerprint(_items(("A", 0), ("B", 1)))


def test_fingerprint_of_empty_page_is_sha256_of_nothing():
    assert compute_fingerprint([]) == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_small_helpers():
    assert to_int("42") == 42
    assert to_int(None) == 0
    assert to_int("n/a") == 0
    assert list(chunked(list(range(5)), 2)) == [[0, 1], [2, 3], [4]]
    assert slugify("Top News & More!") == "top-news-more"


@pytest.mark.parametrize("seconds,expected", [(0, False), (1, True), (60, True), (61, False)])
def test_is_short_boundaries(seconds, expected):
    assert is_short(seconds) is expected


def test_engagement_rate():
    assert engagement_rate(0, 10, 10) == 0.0
    assert engagement_rate(1000, 40, 10) == pytest.approx(5.0)


def test_tiers_for_regular_videos():
    now = datetime(2026, 1, 10, tzinfo=timezone.utc)
    assert calculate_video_tier(5000, now - timedelta(hours=2), False, now=now) == "hot"
    assert calculate_video_tier(600, now - timedelta(hours=48), False, now=now) == "trending"
    assert calculate_video_tier(150, now - timedelta(days=5), False, now=now) == "recent"
    assert calculate_video_tier(60000, now - timedelta(days=400), False, now=now) == "evergreen"
    assert calculate_video_tier(10, now - timedelta(days=60), False, now=now) == "archive"
    assert calculate_video_tier(10, now - timedelta(days=10), False, now=now) == "standard"


def test_engagement_boost_and_short_tiers():
    now = datetime(2026, 1, 10, tzinfo=timezone.utc)
    assert calculate_video_tier(50, now - timedelta(days=3), False, engagement=8.0, now=now) == "trending"
    assert calculate_video_tier(20000, now - timedelta(days=30), True, now=now) == "viral-short"
    assert calculate_video_tier(6000, now - timedelta(days=30), True, now=now) == "popular-short"
    assert calculate_video_tier(10, now - timedelta(hours=5), True, now=now) == "trending"
    assert calculate_video_tier(10, now - timedelta(days=30), True, now=now) == "standard"
