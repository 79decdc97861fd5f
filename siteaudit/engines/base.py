"""
Base class and type contracts for the audit engines.
Every engine MUST inherit from AuditEngine and implement run().

Design principles:
- Engines share one SiteData per audit run; each reads what earlier engines produced
- Engines are independent: no engine imports another
- Engines return a standardized EngineResult
- Engines handle their own errors and return a failed result instead of raising
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field

from siteaudit.core.config import CrawlLimits

logger = structlog.get_logger(__name__)


# ─────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────

class Severity(str, Enum):
    CRITICAL = "critical"   # Blocks indexing or crawling outright
    HIGH = "high"           # Significant ranking / CTR impact
    MEDIUM = "medium"       # Moderate impact
    LOW = "low"             # Minor, mostly accessibility polish


class Pillar(str, Enum):
    INDEXABILITY = "indexability"
    CRAWLABILITY = "crawlability"
    ON_PAGE = "on_page"
    TECHNICAL = "technical"
    FRESHNESS = "freshness"
    PERFORMANCE = "performance"


class SiteType(str, Enum):
    ECOMMERCE = "ecommerce"
    CORPORATE = "corporate"
    CONTENT = "content"
    UNKNOWN = "unknown"


class PageBucket(str, Enum):
    PRODUCT = "product"
    CATEGORY = "category"
    BLOG = "blog"
    PAGE = "page"
    UTILITY = "utility"
    OTHER = "other"


class IssueCode(str, Enum):
    # Crawl-time, per page
    NOINDEX = "noindex"
    ROBOTS_BLOCKED = "robots-blocked"
    BROKEN_PAGE = "broken-page"
    REDIRECT_CHAIN = "redirect-chain"
    CANONICAL_MISMATCH = "canonical-mismatch"
    SHORT_TITLE = "short-title"
    SHORT_META_DESCRIPTION = "short-meta-description"
    MISSING_H1 = "missing-h1"
    MULTIPLE_H1 = "multiple-h1"
    MISSING_ALT_TEXT = "missing-alt-text"
    MISSING_VIEWPORT = "missing-viewport"
    THIN_CONTENT = "thin-content"
    INSECURE_TRANSPORT = "insecure-transport"
    MIXED_CONTENT = "mixed-content"
    SLOW_RESPONSE = "slow-response"
    # Link graph
    ORPHAN_PAGE = "orphan-page"
    DEEP_PAGE = "deep-page"
    # Site level, from external inputs
    STALE_CONTENT = "stale-content"
    POOR_PERFORMANCE = "poor-performance"


class EngineStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"       # Ran but with some failures
    FAILED = "failed"
    SKIPPED = "skipped"


# ─────────────────────────────────────────────
# Core data types
# ─────────────────────────────────────────────

class Page(BaseModel):
    """Observed state of one sampled URL. `url` and `final_url` are normalized."""
    url: str
    final_url: str
    status: int = 0
    redirect_chain: list[str] = Field(default_factory=list)
    content_type: str = ""
    title: str | None = None
    meta_description: str | None = None
    canonical: str | None = None
    meta_robots: str | None = None
    x_robots_tag: str | None = None
    h1_count: int = 0
    images_missing_alt: int = 0
    links_internal: list[str] = Field(default_factory=list)
    has_viewport: bool = False
    word_count: int = 0
    is_https: bool = False
    has_mixed_content: bool = False
    ttfb_ms: float = 0.0
    blocked_by_robots: bool = False
    fetch_error: str | None = None
    depth: int | None = None
    inbound_links: int | None = None
    issues: list[IssueCode] = Field(default_factory=list)

    @property
    def reached(self) -> bool:
        """True when the server answered at all (any HTTP status)."""
        return self.status > 0


class FreshnessInput(BaseModel):
    """Content-age summary supplied by an external content source."""
    score: float = Field(ge=0.0, le=100.0)
    stale_count: int = Field(ge=0, default=0)
    total_items: int = Field(ge=0, default=0)

    @property
    def available(self) -> bool:
        return self.total_items > 0


class Finding(BaseModel):
    """One issue definition measured against one audit."""
    issue: IssueCode
    title: str
    pillar: Pillar
    severity: Severity
    weight: float
    quick_win: bool = False
    affected_pages: int
    checked_pages: int
    ratio: float
    penalty: float
    recommendation: str = ""
    example_urls: list[str] = Field(default_factory=list)


class ScoreBreakdown(BaseModel):
    """Final per-audit score. Built once by the scoring engine."""
    model_config = ConfigDict(frozen=True)

    site_type: SiteType
    checked_pages: int
    pillars: dict[Pillar, float]
    weights: dict[Pillar, float]
    overall_score: float
    grade: str
    total_penalty: float
    freshness_penalty: float = 0.0
    pillar_penalties: dict[Pillar, float]
    freshness_available: bool = False
    performance_blended: bool = False
    findings: list[Finding] = Field(default_factory=list)
    top_issues: list[IssueCode] = Field(default_factory=list)
    quick_wins: list[IssueCode] = Field(default_factory=list)


class SiteData(BaseModel):
    """Per-run audit state handed from engine to engine."""
    audit_id: UUID
    seed_url: str
    origin: str
    site_type: SiteType = SiteType.UNKNOWN
    limits: CrawlLimits = Field(default_factory=CrawlLimits)
    candidates: list[str] = Field(default_factory=list)
    pages: list[Page] = Field(default_factory=list)
    discovered_pages: int = 0
    crawl_stats: dict[str, Any] = Field(default_factory=dict)
    freshness: FreshnessInput | None = None
    performance_score: float | None = Field(default=None, ge=0.0, le=100.0)
    score: ScoreBreakdown | None = None


class EngineResult(BaseModel):
    """Standardized output from every engine."""
    engine_name: str
    audit_id: UUID
    status: EngineStatus
    execution_time_ms: float = 0.0
    pages_analyzed: int = 0
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(use_enum_values=True)


# ─────────────────────────────────────────────
# Base Engine
# ─────────────────────────────────────────────

class AuditEngine(ABC):
    """
    Abstract base class for the audit engines.

    All engines MUST:
    1. Implement run(site_data) -> EngineResult
    2. Write their output onto site_data for the engines that follow
    3. Keep no per-run state on self between calls
    """

    ENGINE_NAME: str = "base"

    def __init__(self):
        self.logger = structlog.get_logger(self.__class__.__name__)

    @abstractmethod
    async def run(self, site_data: SiteData) -> EngineResult:
        """
        Execute the engine against the shared site data.

        Args:
            site_data: Audit state produced so far

        Returns:
            EngineResult describing what the engine did
        """
        ...

    async def execute(self, site_data: SiteData) -> EngineResult:
        """
        Wrapper around run() that adds timing, logging, and error handling.
        Call this instead of run() directly.
        """
        start = time.perf_counter()
        self.logger.info(
            "Engine starting",
            engine=self.ENGINE_NAME,
            seed_url=site_data.seed_url,
            page_count=len(site_data.pages),
        )

        try:
            result = await self.run(site_data)
            elapsed = (time.perf_counter() - start) * 1000
            result.execution_time_ms = elapsed
            self.logger.info(
                "Engine complete",
                engine=self.ENGINE_NAME,
                status=result.status,
                pages_analyzed=result.pages_analyzed,
                elapsed_ms=round(elapsed, 2),
            )
            return result

        except Exception as exc:
            elapsed = (time.perf_counter() - start) * 1000
            self.logger.error(
                "Engine failed",
                engine=self.ENGINE_NAME,
                error=str(exc),
                elapsed_ms=round(elapsed, 2),
                exc_info=True,
            )
            return EngineResult(
                engine_name=self.ENGINE_NAME,
                audit_id=site_data.audit_id,
                status=EngineStatus.FAILED,
                execution_time_ms=elapsed,
                error_message=str(exc) or exc.__class__.__name__,
            )

    @staticmethod
    def calculate_grade(score: float) -> str:
        """Convert numeric score to letter grade."""
        if score >= 90:
            return "A"
        elif score >= 80:
            return "B"
        elif score >= 70:
            return "C"
        elif score >= 60:
            return "D"
        return "F"
