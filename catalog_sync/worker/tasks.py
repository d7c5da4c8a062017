"""Run coordination: run lock, run records and the deadline policy.

Deadline/cancellation policy: the deadline covers the scraping phase. If it
expires, or the run is cancelled, before reconciliation starts, the run is
aborted and the catalog is left untouched; a partial listing set is never
reconciled because it would deactivate products that are still listed.
Reconciliation itself is not bounded by the deadline.
"""

import asyncio
import logging
from contextlib import suppress
from typing import Callable, Optional
from uuid import uuid4

from catalog_sync import metrics
from catalog_sync.catalog.reconciler import Reconciler
from catalog_sync.config import settings
from catalog_sync.ingest.http_client import PageFetcher
from catalog_sync.ingest.pipeline import IndexFetchError, ListingPipeline, SyncResult
from catalog_sync.logging_config import get_logger
from catalog_sync.worker.sync_lock import SyncLockManager, refresh_lock_heartbeat, sync_lock_manager

logger = logging.getLogger(__name__)


class SyncInProgressError(RuntimeError):
    """Raised when another auto-sync run holds the run lock."""


class SyncAbortedError(RuntimeError):
    """Raised when a run hit its deadline before reconciliation."""


class SyncRunner:
    """
    Entry point for sync runs.

    - manual scrape-only runs: no lock, no catalog access
    - auto-sync runs: run lock + heartbeat, SyncRun record, reconcile
    """

    def __init__(
        self,
        lock_manager: Optional[SyncLockManager] = None,
        reconciler: Optional[Reconciler] = None,
        fetcher_factory: Callable[[], PageFetcher] = PageFetcher,
        deadline_seconds: Optional[float] = None,
    ):
        self.lock_manager = lock_manager or sync_lock_manager
        self._reconciler = reconciler
        self.fetcher_factory = fetcher_factory
        self.deadline_seconds = deadline_seconds or settings.run_deadline_seconds

    @property
    def reconciler(self) -> Reconciler:
        if self._reconciler is None:
            self._reconciler = Reconciler(settings.catalog_config())
        return self._reconciler

    async def close(self):
        """Clean up resources."""
        if self._reconciler is not None:
            await self._reconciler.close()
        await self.lock_manager.close()

    async def run(self, profile_url: str, auto_sync: bool, trigger: str = "manual") -> SyncResult:
        """
        Run the pipeline for one profile URL.

        Raises:
            IndexFetchError: Profile page could not be fetched
            SyncInProgressError: Another auto-sync run holds the lock
            SyncAbortedError: Deadline expired before reconciliation
        """
        run_id = uuid4().hex
        log = get_logger(__name__, run_id=run_id)
        log.info(f"Starting {trigger} run (auto_sync: {auto_sync}, run_id: {run_id[:16]}...) for {profile_url}")

        if not auto_sync:
            pipeline = ListingPipeline(fetcher=self.fetcher_factory())
            try:
                report = await self._scrape_with_deadline(pipeline, profile_url)
            finally:
                await pipeline.close()
            metrics.record_sync_run(trigger, "completed")
            return SyncResult(success=True, listings=report.listings)

        return await self._run_locked(run_id, profile_url, trigger, log)

    async def _acquire(self, run_id: str, trigger: str) -> str:
        if trigger == "scheduled":
            token = await self.lock_manager.acquire_lock(run_id)
        else:
            token = await self.lock_manager.wait_for_lock(run_id, settings.sync_lock_wait_seconds)

        if not token:
            metrics.sync_lock_skipped_total.labels(trigger=trigger).inc()
            lock_info = await self.lock_manager.get_lock_info()
            holder = lock_info.get("run_id") if lock_info else None
            raise SyncInProgressError(
                f"Another sync run is in progress (run_id: {holder[:16] if holder else 'unknown'})"
            )
        return token

    async def _scrape_with_deadline(self, pipeline: ListingPipeline, profile_url: str):
        try:
            return await asyncio.wait_for(pipeline.scrape(profile_url), timeout=self.deadline_seconds)
        except asyncio.TimeoutError as e:
            raise SyncAbortedError(
                f"Scrape did not finish within {self.deadline_seconds:.0f} seconds; catalog left untouched"
            ) from e

    async def _run_locked(self, run_id: str, profile_url: str, trigger: str, log) -> SyncResult:
        token = await self._acquire(run_id, trigger)
        store = self.reconciler.store
        heartbeat_task: Optional[asyncio.Task] = None
        run_row_id: Optional[int] = None
        pipeline = ListingPipeline(fetcher=self.fetcher_factory(), reconciler=self.reconciler)

        try:
            run_row_id = await store.start_run(run_id, trigger, True, profile_url)
            heartbeat_task = asyncio.create_task(
                refresh_lock_heartbeat(self.lock_manager, run_id, token)
            )

            try:
                report = await self._scrape_with_deadline(pipeline, profile_url)
            except (SyncAbortedError, asyncio.CancelledError) as e:
                log.warning(f"Run aborted before reconciliation: {str(e) or 'cancelled'}")
                await asyncio.shield(
                    store.finish_run(run_row_id, "aborted", error_message=str(e) or "cancelled")
                )
                metrics.record_sync_run(trigger, "aborted")
                raise
            except IndexFetchError as e:
                await store.finish_run(run_row_id, "failed", error_message=str(e))
                metrics.record_sync_run(trigger, "failed")
                raise

            try:
                result = await pipeline.reconcile(report.listings)
            except asyncio.CancelledError:
                log.warning("Run cancelled during reconciliation; catalog may be partially updated")
                await asyncio.shield(
                    store.finish_run(run_row_id, "failed", error_message="cancelled during reconciliation")
                )
                metrics.record_sync_run(trigger, "failed")
                raise
            except Exception as e:
                log.error(f"Reconciliation failed: {e}", exc_info=True)
                await store.finish_run(run_row_id, "failed", error_message=str(e)[:500])
                metrics.record_sync_run(trigger, "failed")
                raise

            await store.finish_run(
                run_row_id,
                "completed",
                listings_found=len(report.listings),
                imported=result.imported,
                updated=result.updated,
                deactivated=result.deactivated,
                error_message="\n".join(result.errors[:5]) or None,
            )
            metrics.record_sync_run(trigger, "completed")
            log.info(
                f"Auto-sync complete: {result.imported} imported, {result.updated} reactivated, "
                f"{result.deactivated} deactivated"
            )

            applied = result.imported + result.updated + result.deactivated
            return SyncResult(
                success=not (result.errors and applied == 0),
                listings=report.listings,
                imported=result.imported,
                updated=result.updated,
                deactivated=result.deactivated,
                error=result.first_error,
            )

        finally:
            if heartbeat_task and not heartbeat_task.done():
                heartbeat_task.cancel()
                with suppress(asyncio.CancelledError):
                    await heartbeat_task
            await pipeline.close()

            released = await self.lock_manager.safe_unlock(run_id, token=token)
            if not released:
                log.warning(f"Failed to release lock for run_id: {run_id[:16]}...")

    async def scheduled_sync(self):
        """APScheduler job: auto-sync the configured profile."""
        if not settings.sync_profile_url:
            logger.info("Scheduled sync skipped (sync_profile_url not configured)")
            return

        try:
            await self.run(settings.sync_profile_url, auto_sync=True, trigger="scheduled")
        except SyncInProgressError as e:
            logger.info(f"Skipping scheduled sync: {e}")
        except (IndexFetchError, SyncAbortedError) as e:
            logger.error(f"Scheduled sync failed: {e}")


# Global runner instance
sync_runner = SyncRunner()
