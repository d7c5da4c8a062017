"""Async engine and session factories for the catalog database."""

from typing import AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from catalog_sync.config import CatalogConfig, settings


def build_engine(config: CatalogConfig, **kwargs) -> AsyncEngine:
    """
    Create an async engine for the catalog.

    The service credential, when set, becomes the database password so it
    never has to be embedded in the endpoint string.
    """
    url = make_url(config.catalog_endpoint)
    if config.service_credential:
        url = url.set(password=config.service_credential)
    if url.get_backend_name() != "sqlite":
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.catalog_config(), echo=settings.debug)
AsyncSessionLocal = build_session_factory(engine)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a session from the application session factory."""
    async with AsyncSessionLocal() as session:
        yield session
