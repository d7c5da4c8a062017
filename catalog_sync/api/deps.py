"""FastAPI dependencies."""

from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.db.session import get_db
from catalog_sync.worker.tasks import SyncRunner, sync_runner


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


def get_sync_runner() -> SyncRunner:
    """Dependency for the process-wide sync runner."""
    return sync_runner
