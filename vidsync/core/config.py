"""
VidSync Core Settings — playlist mirror + cache invalidation service.

Groups:
  - App / HTTP surface
  - PostgreSQL (asyncpg) + Redis / Celery
  - YouTube Data API v3 client and retry policy
  - Reconciler / lease tuning
  - Cache invalidation: in-process LRU, Cloudflare, static-page revalidation
  - WebSub (PubSubHubbub) webhook secret and hub subscription renewal
  - Periodic statistics / tier refresh
"""
from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8",
        env_prefix="VIDSYNC_", case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "VidSync"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api"
    admin_api_key: Optional[str] = None

    # ── PostgreSQL ───────────────────────────────────────────────────────
    db_host: str = "postgres"
    db_port: int = 5432
    db_user: str = "vidsync"
    db_password: str = "vidsync_secret"
    db_name: str = "vidsync"
    db_url_override: Optional[str] = None

    @property
    def database_url(self) -> str:
        if self.db_url_override:
            return self.db_url_override
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Redis / Celery ───────────────────────────────────────────────────
    celery_broker_url: str = "redis://redis:6379/1"
    celery_result_backend: str = "redis://redis:6379/2"

    # ── YouTube Data API ─────────────────────────────────────────────────
    youtube_api_key: str = ""
    youtube_api_base: str = "https://www.googleapis.com/youtube/v3"
    youtube_channel_id: Optional[str] = None
    youtube_request_timeout: float = 15.0
    youtube_page_size: int = 50
    youtube_details_batch_size: int = 50

    # Retry policy: at most 3 attempts, min(base * 2^(n-1), cap) +/- jitter
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 5000
    retry_jitter: float = 0.3

    # ── Sync ─────────────────────────────────────────────────────────────
    sync_interval_seconds: int = 3600
    lease_duration_ms: int = 30000
    shorts_max_seconds: int = 60
    # Playlists whose changes also refresh the /videos landing page
    hero_playlist_ids: List[str] = []
    shorts_playlist_ids: List[str] = []

    # ── WebSub ───────────────────────────────────────────────────────────
    websub_secret: Optional[str] = None
    websub_hub_url: str = "https://pubsubhubbub.appspot.com/subscribe"
    websub_callback_url: Optional[str] = None  # defaults to <site_base_url>/api/youtube-webhook
    websub_lease_seconds: int = 432000  # 5 days, the hub maximum
    websub_renew_interval_seconds: int = 345600

    # ── Statistics refresh ───────────────────────────────────────────────
    stats_refresh_interval_seconds: int = 21600
    stats_refresh_recent_days: int = 30
    stats_refresh_stale_days: int = 7
    stats_refresh_limit: int = 50

    # ── Cache Invalidation ───────────────────────────────────────────────
    local_cache_max_entries: int = 512
    local_cache_ttl_seconds: int = 300
    invalidation_timeout_seconds: float = 5.0

    cloudflare_api_base: str = "https://api.cloudflare.com/client/v4"
    cloudflare_zone_id: Optional[str] = None
    cloudflare_api_token: Optional[str] = None
    cdn_purge_batch_size: int = 30
    cdn_purge_batch_pause_seconds: float = 0.1

    site_base_url: Optional[str] = None
    revalidate_endpoint: str = "/api/revalidate"
    revalidate_secret: Optional[str] = None

    # ── Paths ────────────────────────────────────────────────────────────
    config_dir: str = "/app/config"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
