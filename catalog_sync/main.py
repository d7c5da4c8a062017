"""FastAPI application: sync endpoint, run history, metrics and the scheduled sync."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from catalog_sync.api.routes import sync
from catalog_sync.config import settings
from catalog_sync.db.models import Base
from catalog_sync.db.session import engine
from catalog_sync.logging_config import setup_logging
from catalog_sync.worker.scheduler import setup_scheduler
from catalog_sync.worker.tasks import sync_runner

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(f"Catalog sync starting (debug={settings.debug})")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.scheduler = None
    if settings.sync_schedule_enabled and settings.sync_profile_url:
        app.state.scheduler = setup_scheduler()
        app.state.scheduler.start()
    elif settings.sync_schedule_enabled:
        logger.warning("Scheduled sync enabled but SYNC_PROFILE_URL is empty; not scheduling")

    try:
        yield
    finally:
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=False)
        await sync_runner.close()
        await engine.dispose()
        logger.info("Catalog sync stopped")


app = FastAPI(
    title="Catalog Sync",
    description="Import classifieds profile listings into the product catalog",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["POST", "OPTIONS", "GET"],
    allow_headers=["Content-Type", "Authorization"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/health"],
).instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

app.include_router(sync.router)


@app.get("/health")
async def health(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "healthy",
        "scheduled_sync": bool(scheduler and scheduler.running),
    }


if __name__ == "__main__":
    uvicorn.run(
        "catalog_sync.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
