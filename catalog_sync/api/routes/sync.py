"""Sync API endpoints."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.api.deps import get_database, get_sync_runner
from catalog_sync.db.models import SyncRun
from catalog_sync.ingest.pipeline import IndexFetchError
from catalog_sync.worker.tasks import SyncInProgressError, SyncRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncRequest(BaseModel):
    """Request model for a profile sync."""

    profile_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("profileURL", "profileUrl")
    )
    auto_sync: bool = Field(default=False, validation_alias=AliasChoices("autoSync", "auto_sync"))


class SyncRunResponse(BaseModel):
    """Response model for a recorded sync run."""

    id: int
    run_id: str
    trigger: str
    auto_sync: bool
    profile_url: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime]
    listings_found: int
    imported: int
    updated: int
    deactivated: int
    error_message: Optional[str]

    model_config = ConfigDict(from_attributes=True)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.options("/marktplaats")
async def sync_options():
    """Bare preflight; CORS headers come from the middleware."""
    return Response(status_code=200)


@router.post("/marktplaats")
async def sync_marktplaats(request: Request, runner: SyncRunner = Depends(get_sync_runner)):
    """
    Scrape a Marktplaats profile and optionally reconcile the catalog.

    Body: ``{"profileURL": str, "autoSync": bool}``
    """
    try:
        payload = await request.json()
        body = SyncRequest.model_validate(payload if isinstance(payload, dict) else {})
    except ValidationError as e:
        return _error(400, f"Invalid request body: {e.errors()[0]['msg']}")
    except ValueError as e:
        logger.error(f"Unreadable sync request body: {e}")
        return _error(500, str(e))

    if not body.profile_url:
        return _error(400, "Profile URL is required")

    try:
        result = await runner.run(body.profile_url, body.auto_sync, trigger="manual")
        return JSONResponse(content=result.to_dict())
    except IndexFetchError as e:
        return _error(500, str(e))
    except SyncInProgressError as e:
        return _error(409, str(e))
    except Exception as e:
        logger.exception(f"Sync request for {body.profile_url} failed")
        return _error(500, str(e))


@router.get("/runs", response_model=List[SyncRunResponse])
async def list_sync_runs(
    status: Optional[str] = None,
    limit: int = 50,
    db: AsyncSession = Depends(get_database),
):
    """List recent sync runs, optionally filtered by status."""
    query = select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit)
    if status:
        query = query.where(SyncRun.status == status)

    result = await db.execute(query)
    return [SyncRunResponse.model_validate(run) for run in result.scalars().all()]
