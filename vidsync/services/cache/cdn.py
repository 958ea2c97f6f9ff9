"""
Cloudflare cache purge — by URL (files) and by cache tag.

Cloudflare accepts at most 30 entries per purge call, so both kinds are sent in
batches with a short pause between them. A failing batch is logged and counted
but never stops the remaining batches.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import aiohttp

from vidsync.core.config import Settings, get_settings
from vidsync.services.sync.helpers import chunked, read_json

logger = logging.getLogger(__name__)


@dataclass
class PurgeReport:
    requested: int = 0
    purged: int = 0
    batches: int = 0
    failed_batches: int = 0
    skipped: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_batches

    def merge(self, other: "PurgeReport") -> "PurgeReport":
        self.requested += other.requested
        self.purged += other.purged
        self.batches += other.batches
        self.failed_batches += other.failed_batches
        self.skipped = self.skipped and other.skipped
        self.errors.extend(other.errors)
        return self


def expand_urls(base_url: Optional[str], paths: Iterable[str]) -> List[str]:
    """Absolute URLs for each path, with and without the trailing slash."""
    urls = []
    base = (base_url or "").rstrip("/")
    for path in paths:
        url = path if path.startswith("http") else f"{base}{path}"
        urls.append(url)
        if not url.endswith("/"):
            urls.append(url + "/")
    return list(dict.fromkeys(urls))


class CloudflarePurger:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        settings: Optional[Settings] = None,
        sleep=asyncio.sleep,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return bool(self.settings.cloudflare_zone_id and self.settings.cloudflare_api_token)

    async def purge_urls(self, urls: Iterable[str]) -> PurgeReport:
        return await self._purge("files", list(dict.fromkeys(urls)))

    async def purge_tags(self, tags: Iterable[str]) -> PurgeReport:
        return await self._purge("tags", list(dict.fromkeys(tags)))

    async def _purge(self, kind: str, values: List[str]) -> PurgeReport:
        report = PurgeReport(requested=len(values))
        if not values:
            return report
        if not self.configured:
            logger.warning(f"Cloudflare purge skipped ({len(values)} {kind}): missing credentials")
            report.skipped = True
            return report

        url = f"{self.settings.cloudflare_api_base}/zones/{self.settings.cloudflare_zone_id}/purge_cache"
        headers = {"Authorization": f"Bearer {self.settings.cloudflare_api_token}"}
        timeout = aiohttp.ClientTimeout(total=self.settings.invalidation_timeout_seconds)
        batches = list(chunked(values, self.settings.cdn_purge_batch_size))

        for index, batch in enumerate(batches, start=1):
            report.batches += 1
            try:
                async with self.session.post(url, json={kind: batch}, headers=headers, timeout=timeout) as resp:
                    body = await read_json(resp)
                if resp.status >= 400 or not (body or {}).get("success"):
                    errors = (body or {}).get("errors") or [f"HTTP {resp.status}"]
                    raise RuntimeError(f"purge rejected: {errors}")
                report.purged += len(batch)
                logger.info(f"Cloudflare purged {kind} batch {index}/{len(batches)} ({len(batch)})")
            except Exception as e:
                report.failed_batches += 1
                report.errors.append(f"{kind} batch {index}: {e}")
                logger.error(f"Cloudflare {kind} purge batch {index} failed: {e}")
            if index < len(batches):
                await self._sleep(self.settings.cdn_purge_batch_pause_seconds)

        return report
