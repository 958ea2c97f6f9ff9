"""
VidSync API — admin sync triggers and status.
"""
from __future__ import annotations

import logging
from typing import Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException

from vidsync.api.deps import get_sync_service, require_admin
from vidsync.models.models import SyncTrigger
from vidsync.schemas.schemas import (
    CleanupResponse,
    PlaylistSyncSchema,
    SyncTriggerRequest,
    SyncTriggerResponse,
)
from vidsync.services.sync.reconciler import ReconcileError
from vidsync.services.sync.sync_service import SyncService, new_trace_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/sync", tags=["Sync"], dependencies=[Depends(require_admin)])


@router.post("/trigger", response_model=SyncTriggerResponse)
async def trigger_sync(
    body: Optional[SyncTriggerRequest] = Body(None),
    service: SyncService = Depends(get_sync_service),
):
    """Sync all active playlists (or the given subset). Always returns a traceId."""
    trace_id = new_trace_id("manual")
    structlog.contextvars.bind_contextvars(trace_id=trace_id)
    try:
        result = await service.sync_all(
            body.playlist_ids if body else None,
            trigger=SyncTrigger.MANUAL.value,
            trace_id=trace_id,
        )
    finally:
        structlog.contextvars.unbind_contextvars("trace_id")
    return SyncTriggerResponse.model_validate(result.to_dict())


@router.post("/playlists/{playlist_id}", response_model=PlaylistSyncSchema)
async def sync_one_playlist(
    playlist_id: str,
    service: SyncService = Depends(get_sync_service),
):
    trace_id = new_trace_id("manual")
    try:
        outcome = await service.sync_playlist(playlist_id, trigger=SyncTrigger.MANUAL.value, trace_id=trace_id)
    except ReconcileError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"[{trace_id}] Manual sync of {playlist_id} failed: {e}")
        raise HTTPException(status_code=502, detail={"traceId": trace_id, "error": str(e)})
    if outcome.status == "locked":
        raise HTTPException(status_code=409, detail={"traceId": trace_id, "error": "Sync already in progress"})
    return PlaylistSyncSchema.model_validate(outcome.__dict__)


@router.get("/status")
async def sync_status(service: SyncService = Depends(get_sync_service)):
    return await service.get_statistics()


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_orphans(service: SyncService = Depends(get_sync_service)):
    return CleanupResponse(removed=await service.cleanup_orphaned_videos())
