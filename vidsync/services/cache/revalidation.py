"""
Static-page revalidation client: POST a typed body for each affected path to
the site's revalidation endpoint, authenticated with the x-revalidate-key header.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

import aiohttp

from vidsync.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

REVALIDATE_HEADER = "x-revalidate-key"
CATEGORY_PREFIX = "/category/category/"


def revalidation_payload(path: str) -> Dict[str, Any]:
    """
    Request body for one path: {type, slug|path, categories}.

      /                      -> homepage
      /category/category/<c> -> category <c>
      /category/<slug>       -> post <slug>
      anything else          -> post at that path
    """
    if path in ("", "/"):
        return {"type": "homepage", "categories": []}
    if path.startswith(CATEGORY_PREFIX):
        category = path[len(CATEGORY_PREFIX):].strip("/")
        return {"type": "category", "slug": category, "categories": [category]}
    if path.startswith("/category/"):
        return {"type": "post", "slug": path[len("/category/"):].strip("/"), "categories": []}
    return {"type": "post", "path": path, "categories": []}


@dataclass
class RevalidationReport:
    results: Dict[str, bool] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    skipped: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for ok in self.results.values() if ok)

    @property
    def failed(self) -> int:
        return sum(1 for ok in self.results.values() if not ok)


class RevalidationClient:
    def __init__(self, session: aiohttp.ClientSession, *, settings: Optional[Settings] = None):
        self.session = session
        self.settings = settings or get_settings()

    @property
    def configured(self) -> bool:
        return bool(self.settings.site_base_url and self.settings.revalidate_secret)

    async def revalidate(self, paths: Iterable[str]) -> RevalidationReport:
        paths = list(dict.fromkeys(paths))
        report = RevalidationReport()
        if not paths:
            return report
        if not self.configured:
            logger.warning("Revalidation skipped: missing site_base_url or revalidate_secret")
            report.skipped = True
            return report

        outcomes = await asyncio.gather(*(self._revalidate_one(p) for p in paths))
        for path, error in zip(paths, outcomes):
            report.results[path] = error is None
            if error is not None:
                report.errors[path] = error
        logger.info(f"Revalidated {report.succeeded}/{len(paths)} paths")
        return report

    async def _revalidate_one(self, path: str) -> Optional[str]:
        """None on success, error text otherwise."""
        url = f"{self.settings.site_base_url.rstrip('/')}{self.settings.revalidate_endpoint}"
        timeout = aiohttp.ClientTimeout(total=self.settings.invalidation_timeout_seconds)
        try:
            async with self.session.post(
                url,
                json=revalidation_payload(path),
                headers={REVALIDATE_HEADER: self.settings.revalidate_secret},
                timeout=timeout,
            ) as resp:
                if resp.status >= 400:
                    return f"HTTP {resp.status}"
            return None
        except asyncio.TimeoutError:
            logger.error(f"Revalidation of {path} timed out")
            return "timeout"
        except aiohttp.ClientError as e:
            logger.error(f"Revalidation of {path} failed: {e}")
            return str(e)
