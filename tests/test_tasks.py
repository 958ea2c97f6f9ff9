from unittest.mock import Mock

import pytest

from vidsync.services.sync.reconciler import ReconcileError
from vidsync.workers import tasks


def test_untracked_playlist_is_not_retried(monkeypatch):
    async def untracked(playlist_id, trigger):
        raise ReconcileError(f"Playlist {playlist_id} is not tracked")

    retry = Mock(return_value=RuntimeError("retry scheduled"))
    monkeypatch.setattr(tasks, "_sync_one", untracked)
    monkeypatch.setattr(tasks.sync_playlist_task, "retry", retry)

    with pytest.raises(ReconcileError):
        tasks.sync_playlist_task("MISSING")

    retry.assert_not_called()


def test_transient_failure_is_retried(monkeypatch):
    async def flaky(playlist_id, trigger):
        raise ConnectionError("database went away")

    retry = Mock(return_value=RuntimeError("retry scheduled"))
    monkeypatch.setattr(tasks, "_sync_one", flaky)
    monkeypatch.setattr(tasks.sync_playlist_task, "retry", retry)

    with pytest.raises(RuntimeError, match="retry scheduled"):
        tasks.sync_playlist_task("PL1")

    retry.assert_called_once()
    assert isinstance(retry.call_args.kwargs["exc"], ConnectionError)


def test_beat_schedule_renews_websub_inside_hub_lease():
    schedule = tasks.celery_app.conf.beat_schedule

    renew = schedule["renew-websub-subscription"]
    assert renew["task"] == "vidsync.workers.tasks.renew_websub_task"
    assert renew["schedule"] < tasks.settings.websub_lease_seconds
    assert schedule["refresh-video-statistics"]["task"] == "vidsync.workers.tasks.refresh_stats_task"
