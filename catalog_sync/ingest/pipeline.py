"""Scrape a profile page and, in auto-sync mode, reconcile the catalog.

Fetcher -> listing URL extractor -> field extractor -> (categorizer +
reconciler). Listing pages are fetched by a small worker pool; each worker
keeps the politeness interval between its own requests. Reconciliation only
starts once every fetch has finished, because deactivations are computed
from the complete listing set.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from catalog_sync import metrics
from catalog_sync.catalog.reconciler import Reconciler, ReconcileResult
from catalog_sync.config import settings
from catalog_sync.ingest.base import Listing
from catalog_sync.ingest.field_extractor import extract_listing
from catalog_sync.ingest.http_client import FetchError, PageFetcher
from catalog_sync.ingest.rate_limiter import PolitenessLimiter
from catalog_sync.ingest.url_extractor import ListingURLExtractor

logger = logging.getLogger(__name__)


class IndexFetchError(RuntimeError):
    """Raised when the profile/index page itself cannot be fetched."""

    def __init__(self, error: FetchError):
        self.fetch_error = error
        self.status = error.status
        detail = error.status if error.status is not None else error.cause
        super().__init__(f"Failed to fetch page: {detail}")


@dataclass
class ScrapeReport:
    """Outcome of the scraping half of a run."""

    listing_urls: list[str] = field(default_factory=list)
    listings: list[Listing] = field(default_factory=list)
    failed_urls: list[str] = field(default_factory=list)
    untitled_urls: list[str] = field(default_factory=list)


@dataclass
class SyncResult:
    """Result payload returned to the caller of a run."""

    success: bool
    listings: list[Listing] = field(default_factory=list)
    imported: Optional[int] = None
    updated: Optional[int] = None
    deactivated: Optional[int] = None
    error: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.listings)

    def to_dict(self) -> dict:
        payload = {
            "success": self.success,
            "listings": [listing.to_dict() for listing in self.listings],
            "count": self.count,
        }
        for key in ("imported", "updated", "deactivated", "error"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


class ListingPipeline:
    """Runs one scrape (and optional reconcile) for a profile URL."""

    def __init__(
        self,
        fetcher: Optional[PageFetcher] = None,
        url_extractor: Optional[ListingURLExtractor] = None,
        reconciler: Optional[Reconciler] = None,
        concurrency: Optional[int] = None,
        politeness_delay: Optional[float] = None,
    ):
        """
        Initialize pipeline.

        Args:
            fetcher: Page fetcher (a default one is created when omitted)
            url_extractor: Listing URL extractor for the source site
            reconciler: Needed only for auto-sync runs
            concurrency: Listing fetch workers (defaults to settings)
            politeness_delay: Seconds between fetches of one worker (defaults to settings)
        """
        self.fetcher = fetcher or PageFetcher()
        self.url_extractor = url_extractor or ListingURLExtractor()
        self.reconciler = reconciler
        self.concurrency = max(1, concurrency or settings.fetch_concurrency)
        self.limiter = PolitenessLimiter(
            settings.politeness_delay_seconds if politeness_delay is None else politeness_delay
        )

    async def fetch_index(self, profile_url: str) -> str:
        try:
            return await self.fetcher.fetch(profile_url, kind="index")
        except FetchError as e:
            logger.error(f"Failed to fetch profile page {profile_url}: {e}")
            raise IndexFetchError(e) from e

    async def _scrape_listing(self, url: str) -> Optional[Listing]:
        try:
            html = await self.fetcher.fetch(url)
        except FetchError as e:
            logger.warning(f"Dropping listing {url}: {e}")
            metrics.record_listing_discarded("fetch_failed")
            return None
        return extract_listing(html, url)

    async def _fetch_all(self, urls: list[str]) -> list[Optional[Listing]]:
        """Fetch listing pages with a bounded worker pool, keeping URL order."""
        results: list[Optional[Listing]] = [None] * len(urls)
        queue: asyncio.Queue[int] = asyncio.Queue()
        for index in range(len(urls)):
            queue.put_nowait(index)

        async def worker(worker_id: int):
            key = f"worker-{worker_id}"
            while True:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                await self.limiter.acquire(key)
                results[index] = await self._scrape_listing(urls[index])

        workers = min(self.concurrency, len(urls))
        await asyncio.gather(*(worker(i) for i in range(workers)))
        return results

    async def scrape(self, profile_url: str) -> ScrapeReport:
        """
        Fetch the profile page and every listing on it.

        Raises:
            IndexFetchError: If the profile page cannot be fetched
        """
        self.limiter.reset()
        index_html = await self.fetch_index(profile_url)
        logger.info(f"Received profile HTML ({len(index_html)} chars) from {profile_url}")

        report = ScrapeReport(listing_urls=self.url_extractor.extract(index_html))
        logger.info(f"Found {len(report.listing_urls)} listing URLs")

        fetched = await self._fetch_all(report.listing_urls)
        for url, listing in zip(report.listing_urls, fetched):
            if listing is None:
                report.failed_urls.append(url)
            elif not listing.has_title:
                report.untitled_urls.append(url)
                metrics.record_listing_discarded("no_title")
                logger.info(f"Dropping listing without title: {url}")
            else:
                report.listings.append(listing)
                metrics.listings_extracted_total.inc()
                logger.debug(
                    f"Added listing: {listing.title} - image: {'yes' if listing.image_url else 'no'}"
                )

        logger.info(
            f"Scraped {len(report.listings)} listings "
            f"({len(report.failed_urls)} fetch failures, {len(report.untitled_urls)} without title)"
        )
        return report

    async def reconcile(self, listings: list[Listing]) -> ReconcileResult:
        if self.reconciler is None:
            raise RuntimeError("Auto-sync requires a reconciler")
        return await self.reconciler.reconcile(listings)

    async def run(self, profile_url: str, auto_sync: bool = False) -> SyncResult:
        """
        Scrape ``profile_url``; reconcile the catalog when ``auto_sync`` is set.

        Raises:
            IndexFetchError: If the profile page cannot be fetched
        """
        report = await self.scrape(profile_url)
        if not auto_sync:
            return SyncResult(success=True, listings=report.listings)

        result = await self.reconcile(report.listings)
        applied = result.imported + result.updated + result.deactivated
        return SyncResult(
            # Rejected writes only fail the run when nothing else was applied
            success=not (result.errors and applied == 0),
            listings=report.listings,
            imported=result.imported,
            updated=result.updated,
            deactivated=result.deactivated,
            error=result.first_error,
        )

    async def close(self):
        await self.fetcher.close()
