"""Reconcile a freshly scraped listing set against the catalog."""

import logging
import threading
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, Optional, Sequence

from catalog_sync import metrics
from catalog_sync.catalog.categorizer import FALLBACK_SLUG, categorize
from catalog_sync.catalog.store import (
    CatalogStore,
    CatalogWriteError,
    NewProduct,
    SourceProduct,
    SQLCatalogStore,
)
from catalog_sync.config import CatalogConfig, settings
from catalog_sync.db.session import build_engine, build_session_factory
from catalog_sync.ingest.base import Category, Listing
from catalog_sync.normalize.processor import make_slug, parse_price

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reactivation:
    product_id: int
    source_url: str
    price: Decimal


@dataclass
class ReconcilePlan:
    """Mutations that bring the catalog in line with one listing set."""

    inserts: list[tuple[Listing, Optional[Category]]] = field(default_factory=list)
    reactivations: list[Reactivation] = field(default_factory=list)
    deactivations: list[SourceProduct] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.inserts or self.reactivations or self.deactivations)


@dataclass
class ReconcileResult:
    """Counts of applied mutations plus the messages of rejected writes."""

    imported: int = 0
    updated: int = 0
    deactivated: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None


def dedupe_listings(listings: Iterable[Listing]) -> list[Listing]:
    """Keep the first listing per URL."""
    seen: set[str] = set()
    unique = []
    for listing in listings:
        if listing.url in seen:
            continue
        seen.add(listing.url)
        unique.append(listing)
    return unique


def plan_reconciliation(
    listings: Iterable[Listing],
    existing: Iterable[SourceProduct],
    categories: Sequence[Category] = (),
    fallback_slug: str = FALLBACK_SLUG,
) -> ReconcilePlan:
    """
    Diff scraped listings against source-linked products.

    - unknown URL: insert, categorized from the listing text
    - known but inactive: reactivate with the listing's price
    - known and active: untouched (only availability is tracked)
    - active product whose URL was not scraped: deactivate
    """
    existing_by_url = {product.source_url: product for product in existing}
    fresh = dedupe_listings(listings)
    fresh_urls = {listing.url for listing in fresh}
    plan = ReconcilePlan()

    for listing in fresh:
        product = existing_by_url.get(listing.url)
        if product is None:
            plan.inserts.append((listing, categorize(listing, categories, fallback_slug)))
        elif not product.active:
            plan.reactivations.append(
                Reactivation(product.id, product.source_url, parse_price(listing.price))
            )

    for url, product in existing_by_url.items():
        if url not in fresh_urls and product.active:
            plan.deactivations.append(product)

    return plan


class SlugSuffix:
    """Millisecond timestamps, strictly increasing within the process."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._last = max(int(self._clock() * 1000), self._last + 1)
            return self._last


slug_suffix = SlugSuffix()


class Reconciler:
    """Applies reconciliation plans to a catalog store."""

    def __init__(
        self,
        config: CatalogConfig,
        store: Optional[CatalogStore] = None,
        fallback_slug: Optional[str] = None,
        default_description: Optional[str] = None,
    ):
        """
        Initialize reconciler.

        Args:
            config: Catalog endpoint and credential
            store: Store to use instead of one built from ``config``
            fallback_slug: Slug of the catch-all category (defaults to settings)
            default_description: Description for listings without one (defaults to settings)
        """
        self.config = config
        self.fallback_slug = fallback_slug or settings.fallback_category_slug
        self.default_description = (
            settings.default_description if default_description is None else default_description
        )
        if store is None:
            engine = build_engine(config)
            store = SQLCatalogStore(build_session_factory(engine), engine=engine)
        self.store = store

    async def close(self):
        await self.store.close()

    async def plan(self, listings: Sequence[Listing]) -> ReconcilePlan:
        """Read current catalog state and compute the plan for ``listings``."""
        categories = await self.store.load_categories()
        existing = await self.store.load_source_products()
        logger.info(
            f"Reconciling {len(listings)} listings against {len(existing)} "
            f"source-linked products ({len(categories)} categories)"
        )
        return plan_reconciliation(listings, existing, categories, self.fallback_slug)

    def _new_product(self, listing: Listing, category: Optional[Category]) -> NewProduct:
        return NewProduct(
            name=listing.title,
            slug=make_slug(listing.title, slug_suffix.next()),
            description=listing.description or self.default_description,
            price=parse_price(listing.price),
            images=[listing.image_url] if listing.image_url else [],
            category_id=category.id if category else None,
            source_url=listing.url,
        )

    async def apply(self, plan: ReconcilePlan) -> ReconcileResult:
        """
        Apply a plan item by item.

        A rejected write is logged and recorded; the remaining items are
        still applied.
        """
        result = ReconcileResult()

        for listing, category in plan.inserts:
            try:
                await self.store.insert_product(self._new_product(listing, category))
            except CatalogWriteError as e:
                self._record_error(result, e)
                continue
            result.imported += 1
            metrics.record_catalog_mutation("insert")
            logger.info(
                f"Imported {listing.url} as '{listing.title}' "
                f"(category: {category.slug if category else None})"
            )

        for item in plan.reactivations:
            try:
                await self.store.set_product_state(item.product_id, active=True, price=item.price)
            except CatalogWriteError as e:
                self._record_error(result, e)
                continue
            result.updated += 1
            metrics.record_catalog_mutation("reactivate")
            logger.info(f"Reactivated product {item.product_id} ({item.source_url})")

        for product in plan.deactivations:
            try:
                await self.store.set_product_state(product.id, active=False)
            except CatalogWriteError as e:
                self._record_error(result, e)
                continue
            result.deactivated += 1
            metrics.record_catalog_mutation("deactivate")
            logger.info(f"Deactivated product {product.id} ({product.source_url})")

        logger.info(
            f"Reconcile complete: {result.imported} imported, {result.updated} reactivated, "
            f"{result.deactivated} deactivated, {len(result.errors)} rejected"
        )
        return result

    @staticmethod
    def _record_error(result: ReconcileResult, error: CatalogWriteError):
        logger.error(f"Catalog write failed: {error}")
        metrics.catalog_write_errors_total.inc()
        result.errors.append(str(error))

    async def reconcile(self, listings: Sequence[Listing]) -> ReconcileResult:
        """Plan and apply in one step."""
        return await self.apply(await self.plan(listings))
