from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from vidsync.core.config import Settings
from vidsync.models.models import ChannelInfo, Playlist, SyncHistory, Video
from vidsync.services.cache.dispatcher import ChangeNotificationDispatcher, DispatchReport
from vidsync.services.cache.paths import InvalidationTargets
from vidsync.services.sync.lease import LeaseManager
from vidsync.services.sync.reconciler import ReconcileError
from vidsync.services.sync.sync_service import SyncService
from vidsync.services.youtube.client import RemoteChannel
from tests.fakes import remote_video


@pytest.fixture
def dispatcher():
    mock = AsyncMock(spec=ChangeNotificationDispatcher)
    mock.dispatch.return_value = DispatchReport(targets=InvalidationTargets())
    return mock


@pytest.fixture
def service(fake_youtube, session_factory, dispatcher):
    settings = Settings(hero_playlist_ids=["HERO"], shorts_playlist_ids=["SHORTS"], youtube_channel_id="UC123")
    return SyncService(fake_youtube, session_factory, dispatcher, settings=settings)


async def test_sync_playlist_reconciles_and_invalidates(service, make_playlist, fake_youtube, dispatcher, session_factory):
    await make_playlist("PL1", slug="news-clips")
    fake_youtube.set_page("PL1", "A", "B")

    outcome = await service.sync_playlist("PL1", trace_id="trace-1")

    assert outcome.status == "success"
    assert outcome.videos_added == 2
    change = dispatcher.dispatch.await_args.args[0]
    assert change.kind == "playlist"
    assert change.playlist_ids == ["PL1"]
    assert change.playlist_slugs == ["news-clips"]
    assert not change.homepage
    async with session_factory() as db:
        playlist = (await db.execute(select(Playlist).where(Playlist.playlist_id == "PL1"))).scalar_one()
        entry = (await db.execute(select(SyncHistory))).scalar_one()
    assert playlist.sync_lease_owner is None
    assert entry.trace_id == "trace-1"


async def test_unchanged_playlist_does_not_invalidate(service, make_playlist, fake_youtube, dispatcher):
    await make_playlist("PL1")
    fake_youtube.set_page("PL1", "A")
    await service.sync_playlist("PL1")
    dispatcher.dispatch.reset_mock()

    outcome = await service.sync_playlist("PL1")

    assert outcome.skipped
    dispatcher.dispatch.assert_not_awaited()


async def test_hero_playlist_change_touches_homepage(service, make_playlist, fake_youtube, dispatcher):
    await make_playlist("HERO")
    fake_youtube.set_page("HERO", "A")

    await service.sync_playlist("HERO")

    assert dispatcher.dispatch.await_args.args[0].homepage


async def test_held_lease_is_a_locked_skip(service, make_playlist, fake_youtube, session_factory):
    await make_playlist("PL1")
    fake_youtube.set_page("PL1", "A")
    assert await LeaseManager(session_factory).acquire("PL1", "someone-else")

    outcome = await service.sync_playlist("PL1")

    assert outcome.status == "locked"
    assert outcome.skipped
    async with session_factory() as db:
        assert (await db.execute(select(Video))).first() is None


async def test_lease_is_extended_between_enrichment_batches(fake_youtube, session_factory, dispatcher, make_playlist):
    leases = LeaseManager(session_factory)
    leases.extend = AsyncMock(wraps=leases.extend)
    service = SyncService(
        fake_youtube, session_factory, dispatcher,
        leases=leases, settings=Settings(youtube_details_batch_size=1),
    )
    await make_playlist("PL1")
    fake_youtube.set_page("PL1", "A", "B", "C")

    outcome = await service.sync_playlist("PL1", trace_id="trace-7")

    assert outcome.status == "success"
    assert leases.extend.await_count == 2
    leases.extend.assert_awaited_with("PL1", "trace-7")


async def test_untracked_playlist_raises(service):
    with pytest.raises(ReconcileError):
        await service.sync_playlist("MISSING")


async def test_bulk_sync_continues_past_failures(service, make_playlist, fake_youtube, session_factory):
    await make_playlist("PL1", title="a")
    await make_playlist("PL2", title="b")
    await make_playlist("PL3", title="c")
    fake_youtube.set_page("PL1", "A")
    fake_youtube.set_page("PL3", "C")
    fake_youtube.failing_playlists = {"PL2"}
    fake_youtube.channel = RemoteChannel(channel_id="UC123", title="Chan", uploads_playlist_id="UU123")

    result = await service.sync_all(trace_id="bulk-1")

    assert result.success
    assert result.playlists_synced == 2
    assert result.playlists_failed == 1
    assert result.videos_added == 2
    assert [o.playlist_id for o in result.playlists] == ["PL1", "PL2", "PL3"]
    assert result.errors and result.errors[0].startswith("PL2")
    async with session_factory() as db:
        statuses = {h.playlist_id: h.status for h in (await db.execute(select(SyncHistory))).scalars()}
        channel = (await db.execute(select(ChannelInfo))).scalar_one()
    assert statuses == {"PL1": "success", "PL2": "failed", "PL3": "success"}
    assert channel.uploads_playlist_id == "UU123"


async def test_bulk_sync_with_no_playlists(service):
    result = await service.sync_all()

    assert not result.success
    assert result.errors == ["No active playlists found"]


async def test_cleanup_removes_videos_without_memberships(service, session_factory, dispatcher):
    async with session_factory() as db:
        db.add(Video(video_id="ORPHAN", title="orphan"))
        await db.commit()

    assert await service.cleanup_orphaned_videos() == 1
    assert dispatcher.dispatch.await_args.args[0].kind == "video"
    assert await service.cleanup_orphaned_videos() == 0


async def test_statistics_refresh_updates_counts(service, make_playlist, fake_youtube, session_factory, dispatcher):
    await make_playlist("PL1")
    fake_youtube.set_page("PL1", "A", "B")
    await service.sync_playlist("PL1")
    dispatcher.dispatch.reset_mock()
    fake_youtube.videos["A"] = remote_video("A", views=500_000)
    del fake_youtube.videos["B"]

    summary = await service.refresh_video_statistics()

    assert summary["checked"] == 2
    assert summary["updated"] == 1
    assert summary["unavailable"] == ["B"]
    assert sorted(fake_youtube.detail_calls[-1]) == ["A", "B"]
    async with session_factory() as db:
        video = (await db.execute(select(Video).where(Video.video_id == "A"))).scalar_one()
    assert video.statistics["viewCount"] == 500_000
    assert video.sync_version == 2
    change = dispatcher.dispatch.await_args.args[0]
    assert change.kind == "video"
    assert change.tiers


async def test_statistics_refresh_with_no_videos_is_quiet(service, dispatcher):
    summary = await service.refresh_video_statistics()

    assert summary["checked"] == 0
    dispatcher.dispatch.assert_not_awaited()


async def test_statistics_report_health(service, make_playlist, fake_youtube):
    before = await service.get_statistics()
    assert before["health"] == "needs-sync"
    assert before["lastSync"] is None

    await make_playlist("PL1")
    fake_youtube.set_page("PL1", "A")
    await service.sync_playlist("PL1")

    stats = await service.get_statistics()
    assert stats["health"] == "healthy"
    assert stats["totalVideos"] == 1
    assert stats["totalPlaylists"] == 1
    assert stats["lastSync"]["playlistId"] == "PL1"
