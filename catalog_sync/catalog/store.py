"""Catalog read/write interface used by the reconciler."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from catalog_sync.db import models
from catalog_sync.ingest.base import Category

logger = logging.getLogger(__name__)


class CatalogWriteError(RuntimeError):
    """Raised when the catalog rejects an insert or update."""


@dataclass(frozen=True)
class SourceProduct:
    """The slice of a source-linked product the reconciler needs."""

    id: int
    source_url: str
    active: bool


@dataclass
class NewProduct:
    """Row to insert for a first-seen listing."""

    name: str
    slug: str
    price: Decimal
    source_url: str
    description: Optional[str] = None
    category_id: Optional[int] = None
    images: list[str] = field(default_factory=list)
    condition: str = "gebruikt"
    stock: int = 1
    active: bool = True
    featured: bool = False


class CatalogStore(ABC):
    """Abstract catalog access."""

    @abstractmethod
    async def load_categories(self) -> list[Category]:
        """Categories with keywords, in tie-break order."""

    @abstractmethod
    async def load_source_products(self) -> list[SourceProduct]:
        """All products that carry a source_url, active or not."""

    @abstractmethod
    async def insert_product(self, product: NewProduct) -> int:
        """Insert a product and return its id. Raises CatalogWriteError."""

    @abstractmethod
    async def set_product_state(
        self, product_id: int, active: bool, price: Optional[Decimal] = None
    ) -> None:
        """Flip availability, optionally refreshing the price. Raises CatalogWriteError."""

    @abstractmethod
    async def start_run(self, run_id: str, trigger: str, auto_sync: bool, profile_url: str) -> int:
        """Record a run as started and return its row id."""

    @abstractmethod
    async def finish_run(self, run_row_id: int, status: str, **counts) -> None:
        """Record the outcome of a run."""

    async def close(self) -> None:
        """Release resources held by the store."""


class SQLCatalogStore(CatalogStore):
    """CatalogStore backed by SQLAlchemy async sessions.

    Every write commits in its own transaction, so a rejected row never
    rolls back rows written before it.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], engine=None):
        self.session_factory = session_factory
        self._engine = engine

    async def load_categories(self) -> list[Category]:
        async with self.session_factory() as db:
            query = (
                select(models.Category)
                .options(selectinload(models.Category.keywords))
                .order_by(models.Category.sort_order, models.Category.id)
            )
            result = await db.execute(query)
            return [
                Category(
                    id=row.id,
                    name=row.name,
                    slug=row.slug,
                    keywords=tuple(kw.keyword for kw in row.keywords),
                )
                for row in result.scalars().all()
            ]

    async def load_source_products(self) -> list[SourceProduct]:
        async with self.session_factory() as db:
            query = select(
                models.Product.id,
                models.Product.source_url,
                models.Product.active,
            ).where(models.Product.source_url.is_not(None))
            result = await db.execute(query)
            return [
                SourceProduct(id=row[0], source_url=row[1], active=row[2])
                for row in result.all()
            ]

    async def insert_product(self, product: NewProduct) -> int:
        async with self.session_factory() as db:
            row = models.Product(
                name=product.name,
                slug=product.slug,
                description=product.description,
                price=product.price,
                condition=product.condition,
                stock=product.stock,
                images=list(product.images),
                active=product.active,
                featured=product.featured,
                category_id=product.category_id,
                source_url=product.source_url,
            )
            db.add(row)
            try:
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise CatalogWriteError(f"Insert rejected for {product.source_url}: {e}") from e
            return row.id

    async def set_product_state(
        self, product_id: int, active: bool, price: Optional[Decimal] = None
    ) -> None:
        async with self.session_factory() as db:
            try:
                row = await db.get(models.Product, product_id)
                if row is None:
                    raise CatalogWriteError(f"Product {product_id} no longer exists")
                row.active = active
                if price is not None:
                    row.price = price
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise CatalogWriteError(f"Update rejected for product {product_id}: {e}") from e

    async def start_run(self, run_id: str, trigger: str, auto_sync: bool, profile_url: str) -> int:
        async with self.session_factory() as db:
            run = models.SyncRun(
                run_id=run_id,
                trigger=trigger,
                auto_sync=auto_sync,
                profile_url=profile_url,
                status="running",
                started_at=datetime.utcnow(),
            )
            db.add(run)
            await db.commit()
            await db.refresh(run)
            return run.id

    async def finish_run(self, run_row_id: int, status: str, **counts) -> None:
        async with self.session_factory() as db:
            run = await db.get(models.SyncRun, run_row_id)
            if run is None:
                logger.warning(f"SyncRun {run_row_id} disappeared before it finished")
                return
            run.status = status
            run.completed_at = datetime.utcnow()
            for key in ("listings_found", "imported", "updated", "deactivated"):
                if counts.get(key) is not None:
                    setattr(run, key, counts[key])
            if counts.get("error_message"):
                run.error_message = counts["error_message"]
            await db.commit()

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
