import asyncio
from datetime import timedelta

from sqlalchemy import select

from vidsync.core.config import Settings
from vidsync.models.models import WebSubSubscription
from vidsync.services.sync.helpers import as_utc, utcnow
from vidsync.services.webhook.subscription import WebSubSubscriber
from tests.fakes import FakeHTTPSession, FakeResponse


def hub_settings(**overrides):
    values = dict(
        site_base_url="https://example.com",
        youtube_channel_id="UC123",
        websub_secret="hub-secret",
    )
    values.update(overrides)
    return Settings(**values)


async def subscription(session_factory, channel_id="UC123"):
    async with session_factory() as db:
        return (await db.execute(
            select(WebSubSubscription).where(WebSubSubscription.channel_id == channel_id)
        )).scalar_one_or_none()


async def test_renew_posts_subscribe_form_to_hub(session_factory):
    session = FakeHTTPSession(lambda url, body: FakeResponse(status=202))
    subscriber = WebSubSubscriber(session, session_factory, settings=hub_settings())

    result = await subscriber.renew()

    assert result.success
    [call] = session.calls
    assert call["url"] == "https://pubsubhubbub.appspot.com/subscribe"
    assert call["data"] == {
        "hub.mode": "subscribe",
        "hub.callback": "https://example.com/api/youtube-webhook",
        "hub.topic": "https://www.youtube.com/xml/feeds/videos.xml?channel_id=UC123",
        "hub.verify": "async",
        "hub.lease_seconds": "432000",
        "hub.secret": "hub-secret",
    }


async def test_renewal_records_expiry_and_counts(session_factory):
    session = FakeHTTPSession(lambda url, body: FakeResponse(status=202))
    subscriber = WebSubSubscriber(session, session_factory, settings=hub_settings())

    await subscriber.renew()
    await subscriber.renew()

    row = await subscription(session_factory)
    assert row.status == "active"
    assert row.renewal_count == 2
    assert row.callback_url == "https://example.com/api/youtube-webhook"
    remaining = as_utc(row.expires_at) - utcnow()
    assert timedelta(days=4, hours=23) < remaining <= timedelta(days=5)


async def test_hub_rejection_is_recorded_as_failed(session_factory):
    responses = iter([FakeResponse(status=202), FakeResponse(status=500)])
    session = FakeHTTPSession(lambda url, body: next(responses))
    subscriber = WebSubSubscriber(session, session_factory, settings=hub_settings())
    await subscriber.renew()
    first_expiry = (await subscription(session_factory)).expires_at

    result = await subscriber.renew()

    assert not result.success
    assert result.error == "HTTP 500"
    row = await subscription(session_factory)
    assert row.status == "failed"
    assert row.last_error == "HTTP 500"
    assert row.expires_at == first_expiry


async def test_hub_timeout_is_reported_not_raised(session_factory):
    session = FakeHTTPSession(lambda url, body: FakeResponse(error=asyncio.TimeoutError()))
    subscriber = WebSubSubscriber(session, session_factory, settings=hub_settings())

    result = await subscriber.renew()

    assert not result.success
    assert result.error == "timeout"


async def test_explicit_callback_url_wins(session_factory):
    session = FakeHTTPSession(lambda url, body: FakeResponse(status=204))
    settings = hub_settings(websub_callback_url="https://hooks.example.com/yt")

    await WebSubSubscriber(session, session_factory, settings=settings).renew()

    assert session.calls[0]["data"]["hub.callback"] == "https://hooks.example.com/yt"


async def test_renewal_without_channel_is_skipped(session_factory):
    session = FakeHTTPSession()
    subscriber = WebSubSubscriber(session, session_factory, settings=hub_settings(youtube_channel_id=None))

    result = await subscriber.renew()

    assert not result.success
    assert result.error == "not configured"
    assert session.calls == []
