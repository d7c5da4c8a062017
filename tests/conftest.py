"""Shared fixtures: SQLite catalog, in-memory run lock, mock-transport fetcher."""

from typing import Callable, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from catalog_sync.catalog.store import SQLCatalogStore
from catalog_sync.db import models
from catalog_sync.db.session import build_session_factory
from catalog_sync.ingest.http_client import PageFetcher
from helpers import FakeLockManager, mock_fetcher


@pytest.fixture
async def catalog_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(catalog_engine):
    return build_session_factory(catalog_engine)


@pytest.fixture
def store(session_factory) -> SQLCatalogStore:
    return SQLCatalogStore(session_factory)


@pytest.fixture
async def seeded_categories(session_factory) -> dict[str, int]:
    """Three categories: zaagmachines, handgereedschap and the 'overig' fallback."""
    table = [
        ("zaagmachines", "Zaagmachines", ["zaag", "cirkelzaag"]),
        ("handgereedschap", "Handgereedschap", ["hamer", "tang"]),
        ("overig", "Overig", []),
    ]
    ids = {}
    async with session_factory() as db:
        for sort_order, (slug, name, keywords) in enumerate(table):
            category = models.Category(
                name=name,
                slug=slug,
                sort_order=sort_order,
                keywords=[
                    models.CategoryKeyword(keyword=kw, position=i) for i, kw in enumerate(keywords)
                ],
            )
            db.add(category)
            await db.flush()
            ids[slug] = category.id
        await db.commit()
    return ids


@pytest.fixture
def lock_manager() -> FakeLockManager:
    return FakeLockManager()


@pytest.fixture
def fetcher_factory() -> Callable[[dict], Callable[[], PageFetcher]]:
    """Returns ``make(pages, delay_urls=None)`` producing a fetcher factory."""

    def make(pages: dict, delay_urls: Optional[dict] = None) -> Callable[[], PageFetcher]:
        return lambda: mock_fetcher(pages, delay_urls)

    return make
