"""
Audit Pipeline - orchestrates one complete site audit.

Flow:
1. Validate and normalize the seed URL
2. Probe the homepage (follows an origin-changing redirect, feeds site-type sniffing,
   and is reused as the crawl's seed page)
3. robots.txt -> sitemap sampling -> candidate hygiene
4. Site type: caller-supplied or classified
5. CrawlerEngine -> LinkGraphEngine -> ScoringEngine over one shared SiteData
6. AuditReport

Error handling:
- AuditError anywhere becomes a failed report carrying its FailureReason
- A crawl in which no page answered is a failed report (site_unreachable), not a score
- Engine exceptions are already turned into failed EngineResults by AuditEngine.execute()
"""

from __future__ import annotations

import asyncio
import random
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, Field

from siteaudit.core.config import CrawlLimits, Profile, build_limits
from siteaudit.core.exceptions import AuditError, FailureReason, InvalidSeedURLError, SiteUnreachableError
from siteaudit.core.reliability import ReliabilityRegistry, Sleep
from siteaudit.core.url import normalize, origin_of
from siteaudit.engines.base import (
    EngineResult,
    EngineStatus,
    FreshnessInput,
    IssueCode,
    Page,
    PageBucket,
    ScoreBreakdown,
    SiteData,
    SiteType,
)
from siteaudit.engines.crawler.engine import CrawlerEngine, eligible_candidates
from siteaudit.engines.crawler.fetcher import (
    FetchResponse,
    HtmlFetcher,
    HttpxFetcher,
    PrefetchedFetcher,
    ReliableFetcher,
)
from siteaudit.engines.crawler.robots import RobotsHandler
from siteaudit.engines.crawler.sampling import BUCKET_ORDER, bucket_breakdown
from siteaudit.engines.crawler.site_type import SiteTypeClassifier
from siteaudit.engines.crawler.sitemap import SitemapSample, SitemapSampler
from siteaudit.engines.graph.engine import LinkGraphEngine
from siteaudit.engines.scoring.engine import ScoringEngine

logger = structlog.get_logger(__name__)


# ─────────────────────────────────────────────
# Report Schema
# ─────────────────────────────────────────────

class AuditStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class AuditMode(str, Enum):
    SAMPLE = "sample"    # smart profile
    CRAWL = "crawl"      # full profile


class Coverage(BaseModel):
    mode: AuditMode
    checked_pages: int
    discovered_pages: int
    estimated_total_urls: int | None = None
    estimated_is_truncated: bool = False
    checked_ratio: float | None = None
    pages_breakdown: dict[PageBucket, int] = Field(default_factory=dict)
    pages_breakdown_pct: dict[PageBucket, float] = Field(default_factory=dict)


class AuditReport(BaseModel):
    audit_id: UUID
    seed_url: str
    profile: Profile
    site_type: SiteType = SiteType.UNKNOWN
    status: AuditStatus
    failure_reason: FailureReason | None = None
    error_message: str | None = None
    started_at: datetime
    finished_at: datetime
    duration_ms: float
    coverage: Coverage | None = None
    pages: list[Page] = Field(default_factory=list)
    score: ScoreBreakdown | None = None
    pages_with_issues: dict[str, list[IssueCode]] = Field(default_factory=dict)
    engine_results: list[EngineResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status is AuditStatus.COMPLETED


def build_coverage(profile: Profile, site_data: SiteData, sitemap: SitemapSample) -> Coverage:
    checked = len(site_data.pages)
    breakdown = bucket_breakdown([p.final_url for p in site_data.pages])
    if sitemap.estimated_total_urls:
        checked_ratio = checked / sitemap.estimated_total_urls
    elif site_data.discovered_pages:
        checked_ratio = checked / site_data.discovered_pages
    else:
        checked_ratio = None

    return Coverage(
        mode=AuditMode.CRAWL if profile == "full" else AuditMode.SAMPLE,
        checked_pages=checked,
        discovered_pages=site_data.discovered_pages,
        estimated_total_urls=sitemap.estimated_total_urls,
        estimated_is_truncated=sitemap.estimated_is_truncated,
        checked_ratio=round(min(1.0, checked_ratio), 4) if checked_ratio is not None else None,
        pages_breakdown=breakdown,
        pages_breakdown_pct={
            bucket: round(100 * breakdown[bucket] / max(1, checked), 1) for bucket in BUCKET_ORDER
        },
    )


# ─────────────────────────────────────────────
# Pipeline
# ─────────────────────────────────────────────

class AuditPipeline:
    """
    Runs audits. Holds no per-run state: each run gets its own
    ReliabilityRegistry, so concurrent audits never share breakers.
    """

    def __init__(
        self,
        fetcher: HtmlFetcher | None = None,
        classifier: SiteTypeClassifier | None = None,
        registry_factory: Callable[[], ReliabilityRegistry] | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
        progress: Callable[[int], None] | None = None,
    ):
        self._fetcher = fetcher
        self.classifier = classifier or SiteTypeClassifier()
        self._registry_factory = registry_factory or ReliabilityRegistry.from_settings
        self._sleep = sleep
        self._rng = rng
        self._progress = progress

    async def run(
        self,
        url: str,
        profile: Profile = "smart",
        overrides: dict[str, Any] | None = None,
        site_type: SiteType | None = None,
        freshness: FreshnessInput | None = None,
        performance_score: float | None = None,
        audit_id: UUID | None = None,
    ) -> AuditReport:
        audit_id = audit_id or uuid4()
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        engine_results: list[EngineResult] = []
        structlog.contextvars.bind_contextvars(audit_id=str(audit_id))
        logger.info("Starting audit", seed_url=url, profile=profile)

        def finish(**fields: Any) -> AuditReport:
            return AuditReport(
                audit_id=audit_id,
                seed_url=fields.pop("seed_url", url),
                profile=profile,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
                engine_results=engine_results,
                **fields,
            )

        try:
            limits = build_limits(profile, overrides)
            if self._fetcher is not None:
                return await self._audit(
                    self._fetcher, url, profile, limits, site_type, freshness,
                    performance_score, audit_id, engine_results, finish,
                )
            async with HttpxFetcher() as fetcher:
                return await self._audit(
                    fetcher, url, profile, limits, site_type, freshness,
                    performance_score, audit_id, engine_results, finish,
                )

        except AuditError as exc:
            logger.error("Audit failed", reason=exc.reason.value, error=str(exc))
            return finish(
                status=AuditStatus.FAILED,
                failure_reason=exc.reason,
                error_message=str(exc),
            )
        finally:
            structlog.contextvars.unbind_contextvars("audit_id")

    async def _audit(
        self,
        http: HtmlFetcher,
        url: str,
        profile: Profile,
        limits: CrawlLimits,
        site_type: SiteType | None,
        freshness: FreshnessInput | None,
        performance_score: float | None,
        audit_id: UUID,
        engine_results: list[EngineResult],
        finish: Callable[..., AuditReport],
    ) -> AuditReport:
        seed_url = normalize(url)
        origin = origin_of(seed_url) if seed_url else None
        if seed_url is None or origin is None:
            raise InvalidSeedURLError(url)

        fetcher = ReliableFetcher(http, self._registry_factory(), sleep=self._sleep)

        # ── Step 1: Homepage probe ───────────────────────
        homepage_html = None
        prefetched: list[FetchResponse] = []
        try:
            home = await fetcher.fetch_html(seed_url, limits.per_page_timeout_ms, limits.max_html_bytes)
            homepage_html = home.body
            prefetched.append(home)
            final = normalize(home.final_url)
            if home.status < 400 and final and origin_of(final) != origin:
                logger.info("Seed redirects to another origin", seed_url=seed_url, final_url=final)
                seed_url, origin = final, origin_of(final)
        except Exception as e:
            logger.warning("Homepage probe failed", seed_url=seed_url, error=str(e) or e.__class__.__name__)

        # ── Step 2: robots.txt + sitemaps ────────────────
        robots = RobotsHandler(origin)
        await robots.load(fetcher, limits)
        sitemap = await SitemapSampler(fetcher, limits).collect(origin, robots.sitemap_urls())
        candidates = eligible_candidates(sitemap.candidates, origin, exclude=seed_url)

        # ── Step 3: Site type ────────────────────────────
        if site_type is None:
            site_type = self.classifier.classify(seed_url, candidates, homepage_html)

        site_data = SiteData(
            audit_id=audit_id,
            seed_url=seed_url,
            origin=origin,
            site_type=site_type,
            limits=limits,
            candidates=candidates,
            freshness=freshness,
            performance_score=performance_score,
        )

        # ── Step 4: Engines ──────────────────────────────
        # The crawler's seed fetch reuses the probe response
        crawler = CrawlerEngine(
            PrefetchedFetcher(fetcher, prefetched),
            robots=robots,
            rng=self._rng,
            sleep=self._sleep,
            progress=self._progress,
        )
        crawl_result = await crawler.execute(site_data)
        engine_results.append(crawl_result)

        if not any(page.reached for page in site_data.pages):
            if crawl_result.status == EngineStatus.FAILED and not site_data.pages:
                raise AuditError(crawl_result.error_message or "Crawl failed", FailureReason.CRAWL_FAILED)
            detail = next((p.fetch_error for p in site_data.pages if p.fetch_error), None)
            raise SiteUnreachableError(seed_url, detail)

        engine_results.append(await LinkGraphEngine().execute(site_data))

        scoring_result = await ScoringEngine().execute(site_data)
        engine_results.append(scoring_result)
        if site_data.score is None:
            raise AuditError(scoring_result.error_message or "Scoring failed", FailureReason.SCORING_FAILED)

        logger.info(
            "Audit complete",
            overall_score=site_data.score.overall_score,
            grade=site_data.score.grade,
            pages=len(site_data.pages),
        )
        return finish(
            seed_url=seed_url,
            site_type=site_type,
            status=AuditStatus.COMPLETED,
            coverage=build_coverage(profile, site_data, sitemap),
            pages=site_data.pages,
            score=site_data.score,
            pages_with_issues={p.final_url: list(p.issues) for p in site_data.pages if p.issues},
        )
