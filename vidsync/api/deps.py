"""
VidSync API dependencies — shared clients live on app.state (built in the
lifespan); routes get them through these providers so tests can override.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from vidsync.core.config import get_settings
from vidsync.core.database import async_session_factory, get_db
from vidsync.services.cache.dispatcher import ChangeNotificationDispatcher
from vidsync.services.sync.sync_service import SyncService
from vidsync.services.webhook.handler import WebhookHandler
from vidsync.services.youtube.client import YouTubeClient

settings = get_settings()


def get_youtube_client(request: Request) -> YouTubeClient:
    return request.app.state.youtube


def get_dispatcher(request: Request) -> ChangeNotificationDispatcher:
    return request.app.state.dispatcher


def get_sync_service(
    client: YouTubeClient = Depends(get_youtube_client),
    dispatcher: ChangeNotificationDispatcher = Depends(get_dispatcher),
) -> SyncService:
    return SyncService(client, async_session_factory, dispatcher)


def get_webhook_handler(
    db: AsyncSession = Depends(get_db),
    client: YouTubeClient = Depends(get_youtube_client),
    dispatcher: ChangeNotificationDispatcher = Depends(get_dispatcher),
) -> WebhookHandler:
    return WebhookHandler(client, db, dispatcher)


async def require_admin(x_admin_key: Optional[str] = Header(None)) -> None:
    """Only enforced when an admin key is configured."""
    if settings.admin_api_key and x_admin_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="Invalid admin key")
