"""Tests for run coordination: lock, run records and the deadline policy."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select

from catalog_sync.catalog.reconciler import Reconciler
from catalog_sync.config import CatalogConfig, settings
from catalog_sync.db.models import Product, SyncRun
from catalog_sync.ingest.pipeline import IndexFetchError
from catalog_sync.worker.tasks import SyncAbortedError, SyncInProgressError, SyncRunner
from helpers import BASE, listing_html, profile_html

PROFILE = f"{BASE}/u/gereedschap-jan/12345/"
LISTING_A = f"{BASE}/v/gereedschap/zagen/m1-cirkelzaag.html"
LISTING_B = f"{BASE}/v/gereedschap/hamers/m2-hamer.html"
OLD = f"{BASE}/v/gereedschap/tangen/m9-verkocht.html"

SITE = {
    PROFILE: profile_html("/v/gereedschap/zagen/m1-cirkelzaag.html", "/v/gereedschap/hamers/m2-hamer.html"),
    LISTING_A: listing_html(title="Makita Cirkelzaag", price_amount="125"),
    LISTING_B: listing_html(title="Estwing hamer", price_amount="25"),
}


@pytest.fixture
def runner_factory(store, lock_manager, fetcher_factory, monkeypatch):
    monkeypatch.setattr(settings, "politeness_delay_seconds", 0)

    def make(pages=SITE, delay_urls=None, deadline_seconds=5.0) -> SyncRunner:
        return SyncRunner(
            lock_manager=lock_manager,
            reconciler=Reconciler(CatalogConfig("sqlite+aiosqlite://"), store=store),
            fetcher_factory=fetcher_factory(pages, delay_urls),
            deadline_seconds=deadline_seconds,
        )

    return make


async def _runs(session_factory) -> list[SyncRun]:
    async with session_factory() as db:
        return list((await db.execute(select(SyncRun).order_by(SyncRun.id))).scalars().all())


async def _add_source_product(session_factory, url: str) -> int:
    async with session_factory() as db:
        product = Product(name="Verkocht", slug="verkocht-1", price=Decimal("5.00"), images=[], source_url=url)
        db.add(product)
        await db.commit()
        return product.id


@pytest.mark.asyncio
async def test_auto_sync_records_run_and_releases_lock(runner_factory, lock_manager, session_factory):
    result = await runner_factory().run(PROFILE, auto_sync=True)

    assert result.success is True
    assert (result.imported, result.updated, result.deactivated) == (2, 0, 0)
    assert lock_manager.holder is None
    assert len(lock_manager.released) == 1

    (run,) = await _runs(session_factory)
    assert run.status == "completed"
    assert run.trigger == "manual"
    assert run.auto_sync is True
    assert (run.listings_found, run.imported) == (2, 2)
    assert run.completed_at is not None


@pytest.mark.asyncio
async def test_scrape_only_run_needs_no_lock(runner_factory, lock_manager, session_factory):
    lock_manager.holder = ("other-run", "token")

    result = await runner_factory().run(PROFILE, auto_sync=False)

    assert result.count == 2
    assert result.imported is None
    assert await _runs(session_factory) == []


@pytest.mark.asyncio
async def test_lock_held_raises_in_progress(runner_factory, lock_manager, session_factory):
    lock_manager.holder = ("other-run-0123456789", "token")

    with pytest.raises(SyncInProgressError):
        await runner_factory().run(PROFILE, auto_sync=True)

    assert lock_manager.holder == ("other-run-0123456789", "token")
    assert await _runs(session_factory) == []


@pytest.mark.asyncio
async def test_scheduled_run_skips_when_locked(runner_factory, lock_manager, session_factory, monkeypatch):
    monkeypatch.setattr(settings, "sync_profile_url", PROFILE)
    lock_manager.holder = ("other-run", "token")

    await runner_factory().scheduled_sync()

    assert await _runs(session_factory) == []


@pytest.mark.asyncio
async def test_scheduled_run_without_profile_is_noop(runner_factory, session_factory, monkeypatch):
    monkeypatch.setattr(settings, "sync_profile_url", "")

    await runner_factory().scheduled_sync()

    assert await _runs(session_factory) == []


@pytest.mark.asyncio
async def test_deadline_aborts_without_mutating_catalog(runner_factory, lock_manager, session_factory):
    old_id = await _add_source_product(session_factory, OLD)
    runner = runner_factory(delay_urls={LISTING_B: 2.0}, deadline_seconds=0.2)

    with pytest.raises(SyncAbortedError):
        await runner.run(PROFILE, auto_sync=True)

    async with session_factory() as db:
        products = (await db.execute(select(Product))).scalars().all()
    assert [(p.id, p.active) for p in products] == [(old_id, True)]

    (run,) = await _runs(session_factory)
    assert run.status == "aborted"
    assert lock_manager.holder is None


@pytest.mark.asyncio
async def test_cancellation_before_reconcile_aborts(runner_factory, lock_manager, session_factory):
    old_id = await _add_source_product(session_factory, OLD)
    runner = runner_factory(delay_urls={LISTING_B: 2.0})

    task = asyncio.create_task(runner.run(PROFILE, auto_sync=True))
    await asyncio.sleep(0.2)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    async with session_factory() as db:
        product = await db.get(Product, old_id)
    assert product.active is True

    (run,) = await _runs(session_factory)
    assert run.status == "aborted"
    assert lock_manager.holder is None


class StallingReconciler(Reconciler):
    """Signals when reconciliation starts, then hangs."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.started = asyncio.Event()

    async def reconcile(self, listings):
        self.started.set()
        await asyncio.sleep(30)
        return await super().reconcile(listings)


@pytest.mark.asyncio
async def test_cancellation_during_reconcile_marks_run_failed(
    store, lock_manager, fetcher_factory, session_factory, monkeypatch
):
    monkeypatch.setattr(settings, "politeness_delay_seconds", 0)
    reconciler = StallingReconciler(CatalogConfig("sqlite+aiosqlite://"), store=store)
    runner = SyncRunner(
        lock_manager=lock_manager,
        reconciler=reconciler,
        fetcher_factory=fetcher_factory(SITE),
        deadline_seconds=5.0,
    )

    task = asyncio.create_task(runner.run(PROFILE, auto_sync=True))
    await asyncio.wait_for(reconciler.started.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    (run,) = await _runs(session_factory)
    assert run.status == "failed"
    assert run.error_message == "cancelled during reconciliation"
    assert run.completed_at is not None
    assert lock_manager.holder is None


@pytest.mark.asyncio
async def test_index_failure_marks_run_failed(runner_factory, lock_manager, session_factory):
    runner = runner_factory(pages={PROFILE: (403, "blocked")})

    with pytest.raises(IndexFetchError):
        await runner.run(PROFILE, auto_sync=True)

    (run,) = await _runs(session_factory)
    assert run.status == "failed"
    assert run.error_message == "Failed to fetch page: 403"
    assert lock_manager.holder is None


@pytest.mark.asyncio
async def test_deactivation_after_complete_scrape(runner_factory, session_factory):
    old_id = await _add_source_product(session_factory, OLD)

    result = await runner_factory().run(PROFILE, auto_sync=True)

    assert result.deactivated == 1
    async with session_factory() as db:
        assert (await db.get(Product, old_id)).active is False
