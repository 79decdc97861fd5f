"""
Sitemap discovery and sampling.

Sitemaps are only a priority hint for the crawler: every file is byte-capped,
at most SITEMAP_FILES_MAX files are read, and each file contributes an evenly
spaced sample of its <loc> entries rather than the whole list.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from bs4 import BeautifulSoup

from siteaudit.core.config import CrawlLimits
from siteaudit.engines.crawler.fetcher import HtmlFetcher

logger = structlog.get_logger(__name__)

COMMON_SITEMAP_PATHS = ("/sitemap.xml", "/sitemap_index.xml")


@dataclass
class SitemapSample:
    found: bool = False
    sitemap_urls: list[str] = field(default_factory=list)
    candidates: list[str] = field(default_factory=list)
    estimated_total_urls: int | None = None
    estimated_is_truncated: bool = False


def parse_locs(xml: str) -> tuple[bool, list[str]]:
    """(is_sitemap_index, <loc> values in document order)."""
    soup = BeautifulSoup(xml, "xml")
    is_index = soup.find("sitemapindex") is not None
    locs = [loc.get_text(strip=True) for loc in soup.find_all("loc")]
    return is_index, [loc for loc in locs if loc]


def thin(locs: list[str], max_urls: int) -> list[str]:
    """Stride-sample an oversized file down to at most max_urls entries."""
    if len(locs) <= max_urls:
        return locs
    step = -(-len(locs) // max_urls)
    return locs[::step][:max_urls]


def evenly_spaced(locs: list[str], count: int) -> list[str]:
    pick = min(count, len(locs))
    if pick <= 0:
        return []
    if pick == 1:
        return [locs[0]]
    return [locs[(k * (len(locs) - 1)) // (pick - 1)] for k in range(pick)]


class SitemapSampler:
    """Collect a diverse candidate sample from a site's sitemaps."""

    def __init__(self, fetcher: HtmlFetcher, limits: CrawlLimits):
        self.fetcher = fetcher
        self.limits = limits

    def discover(self, origin: str, robots_sitemaps: list[str] | None = None) -> list[str]:
        base = origin.rstrip("/")
        urls: list[str] = []
        for url in [*(robots_sitemaps or []), *(f"{base}{path}" for path in COMMON_SITEMAP_PATHS)]:
            if url not in urls:
                urls.append(url)
        return urls

    async def _fetch_locs(self, url: str) -> tuple[bool, list[str]] | None:
        try:
            response = await self.fetcher.fetch_html(
                url, self.limits.per_page_timeout_ms, self.limits.sitemap_max_bytes
            )
        except Exception as e:
            logger.debug("Sitemap fetch failed", url=url, error=str(e))
            return None
        if not 200 <= response.status < 400 or not response.body:
            return None
        try:
            return parse_locs(response.body)
        except Exception as e:
            logger.debug("Sitemap parse failed", url=url, error=str(e))
            return None

    async def collect(self, origin: str, robots_sitemaps: list[str] | None = None) -> SitemapSample:
        sample = SitemapSample(sitemap_urls=self.discover(origin, robots_sitemaps))
        pending = list(sample.sitemap_urls)
        fetched = 0
        followed_index = False
        estimated_total = 0
        seen: set[str] = set()

        while pending and fetched < self.limits.sitemap_files_max:
            url = pending.pop(0)
            fetched += 1
            parsed = await self._fetch_locs(url)
            if parsed is None:
                continue
            is_index, locs = parsed
            sample.found = True

            if is_index:
                # One level of nesting only; children go ahead of other roots
                if not followed_index:
                    followed_index = True
                    children = [loc for loc in locs if loc not in pending]
                    pending[:0] = children
                continue

            if len(locs) > self.limits.sitemap_max_urls_per_file:
                sample.estimated_is_truncated = True
                estimated_total += self.limits.sitemap_max_urls_per_file
            else:
                estimated_total += len(locs)

            for loc in evenly_spaced(thin(locs, self.limits.sitemap_max_urls_per_file), self.limits.sitemap_sample_size):
                if loc not in seen:
                    seen.add(loc)
                    sample.candidates.append(loc)

        if sample.found:
            sample.estimated_total_urls = estimated_total

        logger.info(
            "Sitemaps sampled",
            origin=origin,
            found=sample.found,
            files_read=fetched,
            candidates=len(sample.candidates),
            estimated_total=sample.estimated_total_urls,
        )
        return sample
