"""
Crawler Engine - budget-bounded, stratified sampling crawler.

Architecture:
- Seed plus a quota-balanced pick of candidate URLs form the initial selection
- Bounded asyncio worker pool drains a work queue of newly selected URLs
- Every fetched page can grow the selection until the page budget is full
- Discovery runs in rounds: drain the queue, schedule what the round added, repeat
- Politeness delay + jitter before each fetch; reliability lives in the fetcher
- Results are deduplicated by normalized final URL
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

import structlog

from siteaudit.core.config import CrawlLimits
from siteaudit.core.exceptions import InvalidSeedURLError
from siteaudit.core.reliability import Sleep
from siteaudit.core.url import is_crawlable, normalize, origin_of, resolve, same_canonical, same_origin
from siteaudit.engines.base import (
    AuditEngine,
    EngineResult,
    EngineStatus,
    IssueCode,
    Page,
    SiteData,
    SiteType,
)
from siteaudit.engines.crawler.extract import PageSignals, extract_signals
from siteaudit.engines.crawler.fetcher import FetchResponse, HtmlFetcher
from siteaudit.engines.crawler.robots import RobotsHandler
from siteaudit.engines.crawler.sampling import pick_stratified

logger = structlog.get_logger(__name__)

TITLE_MIN_LENGTH = 10
META_DESCRIPTION_MIN_LENGTH = 50
THIN_CONTENT_WORDS = 300
SLOW_TTFB_MS = 800
PROGRESS_LOG_EVERY = 10


# ─────────────────────────────────────────────
# Per-page issue detection
# ─────────────────────────────────────────────

def detect_page_issues(page: Page) -> list[IssueCode]:
    """Crawl-time issues for one page. A page the server never answered only carries robots blocking."""
    issues: list[IssueCode] = []

    if page.blocked_by_robots:
        issues.append(IssueCode.ROBOTS_BLOCKED)
    if not page.reached:
        return issues

    robots = f"{page.meta_robots or ''} {page.x_robots_tag or ''}".lower()
    if "noindex" in robots:
        issues.append(IssueCode.NOINDEX)
    if page.status >= 400:
        issues.append(IssueCode.BROKEN_PAGE)
    if len(page.redirect_chain) > 1:
        issues.append(IssueCode.REDIRECT_CHAIN)
    if page.canonical and not same_canonical(page.canonical, page.final_url):
        issues.append(IssueCode.CANONICAL_MISMATCH)
    if not page.title or len(page.title.strip()) < TITLE_MIN_LENGTH:
        issues.append(IssueCode.SHORT_TITLE)
    if not page.meta_description or len(page.meta_description.strip()) < META_DESCRIPTION_MIN_LENGTH:
        issues.append(IssueCode.SHORT_META_DESCRIPTION)
    if page.h1_count == 0:
        issues.append(IssueCode.MISSING_H1)
    if page.h1_count > 1:
        issues.append(IssueCode.MULTIPLE_H1)
    if page.images_missing_alt > 0:
        issues.append(IssueCode.MISSING_ALT_TEXT)
    if not page.has_viewport:
        issues.append(IssueCode.MISSING_VIEWPORT)
    if page.word_count < THIN_CONTENT_WORDS:
        issues.append(IssueCode.THIN_CONTENT)
    if not page.is_https:
        issues.append(IssueCode.INSECURE_TRANSPORT)
    if page.has_mixed_content:
        issues.append(IssueCode.MIXED_CONTENT)
    if page.ttfb_ms > SLOW_TTFB_MS:
        issues.append(IssueCode.SLOW_RESPONSE)
    return issues


# ─────────────────────────────────────────────
# Data Structures
# ─────────────────────────────────────────────

class URLIndex:
    """
    Insert-only URL set with atomic check-and-insert and an optional capacity.

    Workers share it on one event loop and add() never awaits, so the
    membership check and the insert cannot interleave with another worker.

    Insertion order is kept, so the current size doubles as a generation
    counter: `since(n)` returns everything added after generation n.
    """

    def __init__(self, capacity: int | None = None):
        self.capacity = capacity
        self._order: list[str] = []
        self._members: set[str] = set()

    def add(self, url: str) -> bool:
        if url in self._members:
            return False
        if self.capacity is not None and len(self._order) >= self.capacity:
            return False
        self._members.add(url)
        self._order.append(url)
        return True

    @property
    def full(self) -> bool:
        return self.capacity is not None and len(self._order) >= self.capacity

    @property
    def generation(self) -> int:
        return len(self._order)

    def since(self, generation: int) -> list[str]:
        return self._order[generation:]

    def snapshot(self) -> list[str]:
        return list(self._order)

    def __contains__(self, url: object) -> bool:
        return url in self._members

    def __len__(self) -> int:
        return len(self._order)


@dataclass
class CrawlStats:
    """Live crawl statistics."""
    total_fetched: int = 0
    total_failed: int = 0          # No HTTP answer at all
    total_duplicates: int = 0      # Final URL already recorded
    robots_blocked: int = 0
    rounds: int = 0
    start_time: float = field(default_factory=time.time)

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_second(self) -> float:
        elapsed = self.elapsed_seconds
        return self.total_fetched / elapsed if elapsed > 0 else 0

    def as_dict(self) -> dict[str, float | int]:
        return {
            "total_fetched": self.total_fetched,
            "total_failed": self.total_failed,
            "total_duplicates": self.total_duplicates,
            "robots_blocked": self.robots_blocked,
            "rounds": self.rounds,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "pages_per_second": round(self.pages_per_second, 2),
        }


@dataclass
class CrawlResult:
    seed_url: str
    origin: str
    pages: list[Page]
    discovered: int
    stats: CrawlStats

    @property
    def checked(self) -> int:
        return len(self.pages)


def eligible_candidates(candidates: Iterable[str], origin: str, exclude: str | None = None) -> list[str]:
    """Normalize, keep same-origin crawlable URLs, dedupe in first-seen order."""
    out: list[str] = []
    seen: set[str] = set()
    for raw in candidates:
        url = normalize(raw)
        if url is None or url == exclude or url in seen:
            continue
        if not same_origin(url, origin) or not is_crawlable(url):
            continue
        seen.add(url)
        out.append(url)
    return out


# ─────────────────────────────────────────────
# Main Crawler
# ─────────────────────────────────────────────

class CrawlerEngine(AuditEngine):
    """
    Stratified sampling crawler.

    Flow:
    1. Select: seed, then pick_stratified(candidates, budget - 1)
    2. Schedule every selected URL not yet scheduled onto the work queue
    3. Workers: delay -> fetch -> extract -> detect issues -> enqueue links
    4. Wait for the queue to drain; repeat from 2 while the selection grew
    5. Pages recorded once per normalized final URL, first completion wins
    """

    ENGINE_NAME = "crawler"

    def __init__(
        self,
        fetcher: HtmlFetcher,
        robots: RobotsHandler | None = None,
        rng: random.Random | None = None,
        sleep: Sleep = asyncio.sleep,
        progress: Callable[[int], None] | None = None,
    ):
        super().__init__()
        self.fetcher = fetcher
        self.robots = robots
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._progress = progress

    async def run(self, site_data: SiteData) -> EngineResult:
        """Crawl and populate site_data.pages."""
        result = await self.crawl(
            site_data.seed_url,
            site_data.limits,
            site_data.candidates,
            site_data.site_type,
        )
        site_data.pages = result.pages
        site_data.discovered_pages = result.discovered
        site_data.crawl_stats = result.stats.as_dict()

        reached = sum(1 for p in result.pages if p.reached)
        if reached == 0:
            status = EngineStatus.FAILED
        elif reached < result.checked:
            status = EngineStatus.PARTIAL
        else:
            status = EngineStatus.SUCCESS

        return EngineResult(
            engine_name=self.ENGINE_NAME,
            audit_id=site_data.audit_id,
            status=status,
            pages_analyzed=result.checked,
            error_message="No page answered" if reached == 0 else None,
            metadata={**site_data.crawl_stats, "discovered": result.discovered, "reached": reached},
        )

    async def crawl(
        self,
        seed: str,
        limits: CrawlLimits,
        candidates: Iterable[str] = (),
        site_type: SiteType = SiteType.UNKNOWN,
    ) -> CrawlResult:
        seed_url = normalize(seed)
        origin = origin_of(seed_url) if seed_url else None
        if seed_url is None or origin is None:
            raise InvalidSeedURLError(seed)

        selected = URLIndex(capacity=limits.sample_total_pages)
        selected.add(seed_url)
        pool = eligible_candidates(candidates, origin, exclude=seed_url)
        for url in pick_stratified(pool, limits.sample_total_pages - 1, site_type):
            selected.add(url)

        self.logger.info(
            "Crawl starting",
            seed_url=seed_url,
            budget=limits.sample_total_pages,
            initial_selection=len(selected),
            candidates=len(pool),
            site_type=site_type.value,
            concurrency=limits.concurrency,
        )

        stats = CrawlStats()
        recorded = URLIndex()
        pages: list[Page] = []
        queue: asyncio.Queue[str] = asyncio.Queue()

        async def worker() -> None:
            while True:
                url = await queue.get()
                try:
                    page = await self._fetch_page(url, origin, limits, selected, stats)
                    if not recorded.add(page.final_url):
                        stats.total_duplicates += 1
                        continue
                    pages.append(page)
                    if len(pages) % PROGRESS_LOG_EVERY == 0:
                        self.logger.info(
                            "Crawl progress",
                            crawled=len(pages),
                            selected=len(selected),
                            pps=round(stats.pages_per_second, 2),
                        )
                    if self._progress:
                        self._progress(len(pages))
                except Exception as e:
                    self.logger.error("Crawl task failed", url=url, error=str(e), exc_info=True)
                finally:
                    queue.task_done()

        workers = [asyncio.create_task(worker()) for _ in range(limits.concurrency)]
        scheduled = 0
        try:
            while True:
                fresh = selected.since(scheduled)
                if not fresh:
                    break
                for url in fresh:
                    queue.put_nowait(url)
                scheduled += len(fresh)
                stats.rounds += 1
                await queue.join()
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        discovered = set(selected.snapshot())
        for page in pages:
            discovered.update(page.links_internal)

        self.logger.info(
            "Crawl complete",
            pages=len(pages),
            discovered=len(discovered),
            **stats.as_dict(),
        )
        return CrawlResult(
            seed_url=seed_url,
            origin=origin,
            pages=pages,
            discovered=len(discovered),
            stats=stats,
        )

    async def _fetch_page(
        self,
        url: str,
        origin: str,
        limits: CrawlLimits,
        selected: URLIndex,
        stats: CrawlStats,
    ) -> Page:
        """Fetch and analyze one URL. Fetch errors become a degraded page, never an exception."""
        delay_ms = limits.request_delay_ms
        if limits.request_jitter_ms > 0:
            delay_ms += self._rng.randint(0, limits.request_jitter_ms)
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)

        blocked = self.robots is not None and not self.robots.can_fetch(url)
        if blocked:
            stats.robots_blocked += 1

        try:
            response = await self.fetcher.fetch_html(url, limits.per_page_timeout_ms, limits.max_html_bytes)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            stats.total_failed += 1
            self.logger.warning("Page fetch failed", url=url, error=error)
            page = Page(
                url=url,
                final_url=url,
                is_https=url.startswith("https://"),
                blocked_by_robots=blocked,
                fetch_error=error,
            )
            page.issues = detect_page_issues(page)
            return page

        stats.total_fetched += 1
        page = self._build_page(url, response, origin, limits, blocked)
        for link in page.links_internal:
            if selected.full:
                break
            selected.add(link)
        return page

    def _build_page(
        self,
        url: str,
        response: FetchResponse,
        origin: str,
        limits: CrawlLimits,
        blocked: bool,
    ) -> Page:
        final_url = normalize(response.final_url) or url
        content_type = response.content_type.lower()
        is_html = not content_type or "html" in content_type
        signals = (
            extract_signals(response.body, response.final_url, limits.max_links_per_page, origin)
            if is_html
            else PageSignals()
        )

        links: list[str] = []
        for link in signals.links:
            normalized = normalize(link)
            if normalized and normalized not in links and same_origin(normalized, origin) and is_crawlable(normalized):
                links.append(normalized)

        canonical = None
        if signals.canonical:
            canonical = resolve(signals.canonical, response.final_url) or signals.canonical

        is_https = final_url.startswith("https://")
        page = Page(
            url=url,
            final_url=final_url,
            status=response.status,
            redirect_chain=[normalize(hop) or hop for hop in response.redirect_chain],
            content_type=response.content_type,
            title=signals.title,
            meta_description=signals.meta_description,
            canonical=canonical,
            meta_robots=signals.meta_robots,
            x_robots_tag=response.headers.get("x-robots-tag"),
            h1_count=signals.h1_count,
            images_missing_alt=signals.images_missing_alt,
            links_internal=links,
            has_viewport=signals.has_viewport,
            word_count=signals.word_count,
            is_https=is_https,
            has_mixed_content=is_https and signals.references_http_resources,
            ttfb_ms=round(response.ttfb_ms, 1),
            blocked_by_robots=blocked,
        )
        page.issues = detect_page_issues(page)
        return page
