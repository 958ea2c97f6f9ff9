"""
VidSync Change Notification Dispatcher.

After content changes, invalidate every cache tier in order:
  1. in-process LRU caches (logical keys)
  2. Cloudflare CDN (absolute URLs with/without trailing slash, then tags)
  3. static-page revalidation endpoint (per path)

Each tier is isolated: a failure is logged and counted in
vidsync_invalidation_failures_total and the next tier still runs. Nothing
here rolls back the content change that triggered it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from vidsync.core.config import Settings, get_settings
from vidsync.core.metrics import INVALIDATION_FAILURES
from vidsync.services.cache.cdn import CloudflarePurger, PurgeReport, expand_urls
from vidsync.services.cache.local_cache import LocalCacheRegistry, cache_registry
from vidsync.services.cache.paths import (
    ContentChange, InvalidationMap, InvalidationTargets, derive_targets, load_invalidation_map,
)
from vidsync.services.cache.revalidation import RevalidationClient, RevalidationReport

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    targets: InvalidationTargets
    local_keys_cleared: int = 0
    urls: PurgeReport = field(default_factory=PurgeReport)
    tags: PurgeReport = field(default_factory=PurgeReport)
    revalidation: RevalidationReport = field(default_factory=RevalidationReport)
    failed_layers: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_layers

    def summary(self) -> dict:
        return {
            "paths": len(self.targets.paths),
            "tags": len(self.targets.tags),
            "localKeysCleared": self.local_keys_cleared,
            "urlsPurged": self.urls.purged,
            "tagsPurged": self.tags.purged,
            "revalidated": self.revalidation.succeeded,
            "revalidationFailed": self.revalidation.failed,
            "failedLayers": self.failed_layers,
        }


class ChangeNotificationDispatcher:
    def __init__(
        self,
        *,
        purger: Optional[CloudflarePurger] = None,
        revalidator: Optional[RevalidationClient] = None,
        caches: Optional[LocalCacheRegistry] = None,
        mapping: Optional[InvalidationMap] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.purger = purger
        self.revalidator = revalidator
        self.caches = caches if caches is not None else cache_registry
        self.mapping = mapping or load_invalidation_map(self.settings.config_dir)

    def targets_for(self, change: ContentChange) -> InvalidationTargets:
        return derive_targets(change, self.mapping)

    async def dispatch(self, change: ContentChange) -> DispatchReport:
        targets = self.targets_for(change)
        report = DispatchReport(targets=targets)
        if targets.is_empty:
            return report

        # 1. in-process
        try:
            report.local_keys_cleared = self.caches.invalidate(targets.cache_keys)
        except Exception as e:
            self._failed(report, "local", e)

        # 2. CDN
        if self.purger is not None:
            try:
                urls = expand_urls(self.settings.site_base_url, targets.paths) if self.settings.site_base_url else []
                report.urls = await self.purger.purge_urls(urls + targets.urls)
                report.tags = await self.purger.purge_tags(targets.tags)
                if not (report.urls.ok and report.tags.ok):
                    self._failed(report, "cdn", "; ".join(report.urls.errors + report.tags.errors))
            except Exception as e:
                self._failed(report, "cdn", e)

        # 3. revalidation
        if self.revalidator is not None:
            try:
                report.revalidation = await self.revalidator.revalidate(targets.paths)
                if report.revalidation.failed:
                    self._failed(report, "revalidation", f"{report.revalidation.failed} paths failed")
            except Exception as e:
                self._failed(report, "revalidation", e)

        logger.info(
            f"Invalidated {change.kind}: {len(targets.paths)} paths, "
            f"{len(targets.tags)} tags, failed layers={report.failed_layers or 'none'}"
        )
        return report

    @staticmethod
    def _failed(report: DispatchReport, layer: str, error) -> None:
        report.failed_layers.append(layer)
        INVALIDATION_FAILURES.labels(layer=layer).inc()
        logger.error(f"Cache invalidation layer '{layer}' failed: {error}")
