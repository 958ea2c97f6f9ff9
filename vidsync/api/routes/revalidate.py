"""
VidSync API — on-demand revalidation for CMS content changes.
"""
from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from vidsync.api.deps import get_dispatcher
from vidsync.core.config import get_settings
from vidsync.schemas.schemas import RevalidateRequest, RevalidateResponse
from vidsync.services.cache.dispatcher import ChangeNotificationDispatcher
from vidsync.services.cache.paths import ContentChange

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/revalidate", tags=["Revalidate"])


def _key_matches(provided: Optional[str]) -> bool:
    expected = settings.revalidate_secret
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@router.post("", response_model=RevalidateResponse)
async def revalidate(
    body: RevalidateRequest,
    x_revalidate_key: Optional[str] = Header(None),
    dispatcher: ChangeNotificationDispatcher = Depends(get_dispatcher),
):
    if not _key_matches(x_revalidate_key):
        raise HTTPException(status_code=401, detail="Invalid revalidation key")
    if body.type in ("post", "category") and not (body.slug or body.path):
        raise HTTPException(status_code=400, detail="slug or path is required")

    change = ContentChange(
        kind=body.type,
        slug=body.slug,
        path=body.path,
        categories=body.categories,
    )
    report = await dispatcher.dispatch(change)
    logger.info(f"Revalidated {body.type} {body.slug or body.path or ''}: {report.summary()}")
    return RevalidateResponse(
        revalidated=report.ok,
        type=body.type,
        paths=report.targets.paths,
        tags_purged=report.tags.purged,
        local_keys_cleared=report.local_keys_cleared,
        failed_layers=report.failed_layers,
    )
