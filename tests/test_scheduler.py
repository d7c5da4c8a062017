"""Tests for scheduler configuration."""

from catalog_sync.config import settings
from catalog_sync.worker.scheduler import setup_scheduler
from catalog_sync.worker.tasks import SyncRunner
from helpers import FakeLockManager


def test_profile_sync_job(monkeypatch):
    monkeypatch.setattr(settings, "sync_interval_minutes", 15)
    runner = SyncRunner(lock_manager=FakeLockManager())

    scheduler = setup_scheduler(runner)
    job = scheduler.get_job("profile_sync")

    assert job is not None
    assert job.max_instances == 1
    assert job.coalesce is True
    assert job.trigger.interval.total_seconds() == 15 * 60
    assert job.func == runner.scheduled_sync


def test_interval_never_below_one_minute(monkeypatch):
    monkeypatch.setattr(settings, "sync_interval_minutes", 0)

    job = setup_scheduler(SyncRunner(lock_manager=FakeLockManager())).get_job("profile_sync")

    assert job.trigger.interval.total_seconds() == 60
