import hashlib
import hmac
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from vidsync.api.deps import get_webhook_handler
from vidsync.main import app
from vidsync.models.models import PlaylistItem, Video, VideoPlaylist, WebSubStats
from vidsync.services.cache.dispatcher import ChangeNotificationDispatcher, DispatchReport
from vidsync.services.cache.paths import InvalidationTargets
from vidsync.services.webhook.feed import parse_feed
from vidsync.services.webhook.handler import WebhookHandler, WebhookState, verify_signature

SECRET = "websub-test-secret"


def feed(*video_ids, deleted=()):
    entries = "".join(
        f"""
  <entry>
    <id>yt:video:{v}</id>
    <yt:videoId>{v}</yt:videoId>
    <yt:channelId>UC123</yt:channelId>
    <title>Video {v}</title>
    <link rel="alternate" href="https://www.youtube.com/watch?v={v}"/>
    <published>2026-01-01T00:00:00+00:00</published>
    <updated>2026-01-01T00:05:00+00:00</updated>
  </entry>"""
        for v in video_ids
    )
    tombstones = "".join(
        f'\n  <at:deleted-entry ref="yt:video:{v}" when="2026-01-02T00:00:00+00:00"/>' for v in deleted
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015" '
        'xmlns:at="http://purl.org/atompub/tombstones/1.0" '
        f'xmlns="http://www.w3.org/2005/Atom">{entries}{tombstones}\n</feed>'
    ).encode("utf-8")


def sign(body: bytes, secret: str = SECRET, algorithm: str = "sha1") -> str:
    return f"{algorithm}=" + hmac.new(secret.encode(), body, getattr(hashlib, algorithm)).hexdigest()


@pytest.fixture
def dispatcher():
    mock = AsyncMock(spec=ChangeNotificationDispatcher)
    mock.dispatch.return_value = DispatchReport(targets=InvalidationTargets())
    return mock


@pytest.fixture
def handler(db, fake_youtube, dispatcher):
    return WebhookHandler(fake_youtube, db, dispatcher, secret=SECRET)


@pytest.fixture
async def api(handler):
    app.dependency_overrides[get_webhook_handler] = lambda: handler
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def count(session_factory, column):
    async with session_factory() as db:
        return await db.scalar(select(func.count(column)))


# ── Signatures / feed ────────────────────────────────────────────────────

def test_signature_verification():
    body = feed("A")
    assert verify_signature(body, sign(body), SECRET)
    assert verify_signature(body, sign(body, algorithm="sha256"), SECRET)
    assert not verify_signature(body, sign(body, secret="wrong"), SECRET)
    assert not verify_signature(body + b" ", sign(body), SECRET)
    assert not verify_signature(body, "md5=abc", SECRET)
    assert not verify_signature(body, None, SECRET)
    assert not verify_signature(body, sign(body), None)


def test_feed_parsing():
    delta = parse_feed(feed("A", "B", "A", deleted=["Z"]))

    assert delta.video_ids == ["A", "B"]
    assert delta.deleted_video_ids == ["Z"]
    assert delta.entries[0].channel_id == "UC123"
    assert delta.entries[0].link == "https://www.youtube.com/watch?v=A"


def test_malformed_feed_is_empty():
    assert parse_feed(b"<feed><entry>").is_empty
    assert parse_feed(b"").is_empty


# ── Handler ──────────────────────────────────────────────────────────────

async def test_bad_signature_is_rejected_without_writes(handler, session_factory, dispatcher):
    body = feed("A")

    outcome = await handler.handle(body, sign(body, secret="wrong"))

    assert outcome.state == WebhookState.REJECTED
    assert await count(session_factory, Video.id) == 0
    assert await count(session_factory, WebSubStats.id) == 0
    dispatcher.dispatch.assert_not_awaited()


async def test_empty_feed_is_noop(handler, dispatcher):
    body = feed()

    outcome = await handler.handle(body, sign(body))

    assert outcome.state == WebhookState.NOOP
    dispatcher.dispatch.assert_not_awaited()


async def test_video_is_ingested_with_memberships(handler, make_playlist, fake_youtube, session_factory, dispatcher):
    await make_playlist("PL1", slug="highlights")
    await make_playlist("PL2")
    fake_youtube.set_page("PL1", "A")
    fake_youtube.set_page("PL2")
    body = feed("A")

    outcome = await handler.handle(body, sign(body))

    assert outcome.state == WebhookState.COMPLETED
    assert outcome.videos_processed == 1
    async with session_factory() as db:
        video = (await db.execute(select(Video).where(Video.video_id == "A"))).scalar_one()
        assert video.playlists == ["PL1"]
        stats = await db.get(WebSubStats, 1)
        assert stats.webhooks_received == 1
        assert stats.videos_processed == 1
    change = dispatcher.dispatch.await_args.args[0]
    assert change.video_ids == ["A"]
    assert change.playlist_ids == ["PL1"]
    assert change.playlist_slugs == ["highlights"]


async def test_one_failing_video_does_not_stop_others(handler, make_playlist, fake_youtube):
    await make_playlist("PL1")
    fake_youtube.set_page("PL1", "A", "BAD")
    fake_youtube.failing_videos = {"BAD"}
    body = feed("BAD", "A")

    outcome = await handler.handle(body, sign(body))

    assert outcome.state == WebhookState.COMPLETED
    assert outcome.videos_processed == 1
    assert outcome.videos_failed == 1
    assert outcome.errors[0].startswith("BAD")


async def test_deleted_entry_removes_video(handler, make_playlist, fake_youtube, session_factory):
    await make_playlist("PL1")
    fake_youtube.set_page("PL1", "A")
    body = feed("A")
    await handler.handle(body, sign(body))
    async with session_factory() as db:
        db.add(PlaylistItem(playlist_id="PL1", video_id="A", position=0))
        await db.commit()

    body = feed(deleted=["A"])
    outcome = await handler.handle(body, sign(body))

    assert outcome.videos_deleted == 1
    assert await count(session_factory, Video.id) == 0
    assert await count(session_factory, VideoPlaylist.id) == 0
    async with session_factory() as db:
        item = (await db.execute(select(PlaylistItem))).scalar_one()
    assert item.removed_at is not None


# ── Routes ───────────────────────────────────────────────────────────────

async def test_subscription_handshake_echoes_challenge(api):
    resp = await api.get(
        "/api/youtube-webhook",
        params={"hub.mode": "subscribe", "hub.challenge": "abc123", "hub.topic": "topic"},
    )
    assert resp.status_code == 200
    assert resp.text == "abc123"

    resp = await api.get("/api/youtube-webhook", params={"hub.mode": "bogus"})
    assert resp.status_code == 400


async def test_post_with_bad_signature_returns_401(api, session_factory):
    body = feed("A")

    resp = await api.post(
        "/api/youtube-webhook",
        content=body,
        headers={"content-type": "application/atom+xml", "x-hub-signature": sign(body, secret="nope")},
    )

    assert resp.status_code == 401
    assert await count(session_factory, WebSubStats.id) == 0


async def test_post_with_valid_signature_reports_counts(api, make_playlist, fake_youtube):
    await make_playlist("PL1")
    fake_youtube.set_page("PL1", "A")
    body = feed("A")

    resp = await api.post(
        "/api/youtube-webhook",
        content=body,
        headers={"content-type": "application/atom+xml", "x-hub-signature": sign(body)},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["videosProcessed"] == 1
    assert data["videosFailed"] == 0
