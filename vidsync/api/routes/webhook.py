"""
VidSync API — YouTube WebSub (PubSubHubbub) callback.
"""
from __future__ import annotations

import logging
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from vidsync.api.deps import get_webhook_handler
from vidsync.schemas.schemas import WebhookResponse
from vidsync.services.webhook.handler import WebhookHandler, WebhookState

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/youtube-webhook", tags=["Webhook"])


@router.get("", response_class=PlainTextResponse)
async def verify_subscription(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    hub_topic: Optional[str] = Query(None, alias="hub.topic"),
):
    """Subscription handshake: echo the challenge back verbatim."""
    if hub_mode in ("subscribe", "unsubscribe") and hub_challenge is not None:
        logger.info(f"WebSub {hub_mode} verified for {hub_topic}")
        return PlainTextResponse(hub_challenge)
    raise HTTPException(status_code=400, detail="Invalid verification request")


@router.post("", response_model=WebhookResponse)
async def receive_notification(
    request: Request,
    x_hub_signature: Optional[str] = Header(None),
    handler: WebhookHandler = Depends(get_webhook_handler),
):
    """Content delta push. The raw body is read first: the HMAC covers its exact bytes."""
    raw_body = await request.body()
    structlog.contextvars.bind_contextvars(source="websub")
    try:
        outcome = await handler.handle(raw_body, x_hub_signature)
    except Exception as e:
        logger.exception(f"WebSub processing failed: {e}")
        raise HTTPException(status_code=500, detail="Webhook processing failed")
    finally:
        structlog.contextvars.unbind_contextvars("source")

    if outcome.state == WebhookState.REJECTED:
        raise HTTPException(status_code=401, detail="Invalid signature")

    return WebhookResponse(
        videos_processed=outcome.videos_processed,
        videos_failed=outcome.videos_failed,
        videos_deleted=outcome.videos_deleted,
        timestamp=outcome.timestamp,
    )
