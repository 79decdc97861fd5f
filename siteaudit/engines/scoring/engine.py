"""
Scoring Engine - turns per-page issues into pillar scores and one overall score.

Scoring Model:
- Each issue definition yields a penalty from its prevalence (affected / checked)
- Pillar score = max(0, 100 - sum of its issue penalties)
- Freshness pillar takes the external content-age score as-is
- Performance blends an external page-speed score (40%) with its penalty score (60%)
- Overall score = pillar scores weighted by a site-type table
- Missing freshness data hands its weight evenly to the other five pillars
"""

from __future__ import annotations

import structlog

from siteaudit.core.issues import ISSUE_DEFINITIONS, get_definition, penalty_for
from siteaudit.engines.base import (
    AuditEngine,
    EngineResult,
    EngineStatus,
    Finding,
    FreshnessInput,
    IssueCode,
    Page,
    Pillar,
    ScoreBreakdown,
    SiteData,
    SiteType,
)

logger = structlog.get_logger(__name__)

MAX_EXAMPLE_URLS = 25
TOP_ISSUES_LIMIT = 5
POOR_PERFORMANCE_THRESHOLD = 50.0
PERFORMANCE_EXTERNAL_SHARE = 0.4


# ─────────────────────────────────────────────
# Pillar Weights
# ─────────────────────────────────────────────

_CONTENT_WEIGHTS = {
    Pillar.INDEXABILITY: 0.15,
    Pillar.CRAWLABILITY: 0.12,
    Pillar.ON_PAGE: 0.21,
    Pillar.TECHNICAL: 0.18,
    Pillar.FRESHNESS: 0.15,
    Pillar.PERFORMANCE: 0.19,
}

PILLAR_WEIGHTS: dict[SiteType, dict[Pillar, float]] = {
    SiteType.ECOMMERCE: {
        Pillar.INDEXABILITY: 0.15,
        Pillar.CRAWLABILITY: 0.12,
        Pillar.ON_PAGE: 0.20,
        Pillar.TECHNICAL: 0.18,
        Pillar.FRESHNESS: 0.15,
        Pillar.PERFORMANCE: 0.20,
    },
    SiteType.CORPORATE: {
        Pillar.INDEXABILITY: 0.14,
        Pillar.CRAWLABILITY: 0.11,
        Pillar.ON_PAGE: 0.22,
        Pillar.TECHNICAL: 0.19,
        Pillar.FRESHNESS: 0.16,
        Pillar.PERFORMANCE: 0.18,
    },
    SiteType.CONTENT: _CONTENT_WEIGHTS,
    SiteType.UNKNOWN: _CONTENT_WEIGHTS,
}


def pillar_weights(site_type: SiteType, freshness_available: bool) -> dict[Pillar, float]:
    weights = dict(PILLAR_WEIGHTS.get(site_type, _CONTENT_WEIGHTS))
    if not freshness_available:
        share = weights[Pillar.FRESHNESS] / (len(weights) - 1)
        for pillar in weights:
            weights[pillar] = 0.0 if pillar is Pillar.FRESHNESS else weights[pillar] + share
    return weights


# ─────────────────────────────────────────────
# Scoring
# ─────────────────────────────────────────────

def count_issues(pages: list[Page]) -> tuple[dict[IssueCode, int], dict[IssueCode, list[str]]]:
    """Affected-page counts and example URLs (final URL preferred) per issue."""
    counts: dict[IssueCode, int] = {}
    examples: dict[IssueCode, list[str]] = {}
    for page in pages:
        for code in set(page.issues):
            counts[code] = counts.get(code, 0) + 1
            urls = examples.setdefault(code, [])
            if len(urls) < MAX_EXAMPLE_URLS:
                urls.append(page.final_url or page.url)
    return counts, examples


def _finding(code: IssueCode, affected: int, checked: int, penalty: float | None = None,
             examples: list[str] | None = None) -> Finding:
    definition = get_definition(code)
    ratio = affected / max(1, checked)
    return Finding(
        issue=code,
        title=definition.title,
        pillar=definition.pillar,
        severity=definition.severity,
        weight=definition.weight,
        quick_win=definition.quick_win,
        affected_pages=affected,
        checked_pages=checked,
        ratio=round(ratio, 4),
        penalty=round(penalty_for(definition, ratio) if penalty is None else penalty, 2),
        recommendation=definition.recommendation,
        example_urls=examples or [],
    )


def score_site(
    pages: list[Page],
    site_type: SiteType = SiteType.UNKNOWN,
    freshness: FreshnessInput | None = None,
    performance_score: float | None = None,
) -> ScoreBreakdown:
    """
    Score a crawled page set.

    Only issues affecting at least one page contribute a penalty. Zero pages
    still produce a well-formed breakdown: every ratio divides by max(1, checked).
    """
    checked = len(pages)
    counts, examples = count_issues(pages)
    if performance_score is not None and performance_score < POOR_PERFORMANCE_THRESHOLD:
        counts[IssueCode.POOR_PERFORMANCE] = counts.get(IssueCode.POOR_PERFORMANCE, 0) + 1

    freshness_available = freshness is not None and freshness.available
    freshness_penalty = 0.0
    if freshness_available:
        stale_ratio = freshness.stale_count / freshness.total_items
        freshness_penalty = penalty_for(get_definition(IssueCode.STALE_CONTENT), stale_ratio)

    # ── Per-issue penalties ──────────────────────────
    findings: list[Finding] = []
    pillar_penalties = {pillar: 0.0 for pillar in Pillar}
    pillar_penalties[Pillar.FRESHNESS] = freshness_penalty

    for definition in ISSUE_DEFINITIONS:
        if definition.pillar is Pillar.FRESHNESS:
            continue
        affected = counts.get(definition.id, 0)
        if affected == 0:
            continue
        ratio = affected / max(1, checked)
        penalty = penalty_for(definition, ratio)
        pillar_penalties[definition.pillar] += penalty
        findings.append(_finding(definition.id, affected, checked, penalty, examples.get(definition.id)))

    if freshness_available and freshness.stale_count > 0:
        findings.append(_finding(
            IssueCode.STALE_CONTENT, freshness.stale_count, freshness.total_items, freshness_penalty,
        ))

    findings.sort(key=lambda f: f.penalty, reverse=True)

    # ── Pillar scores ────────────────────────────────
    pillars = {pillar: max(0.0, 100.0 - pillar_penalties[pillar]) for pillar in Pillar}
    pillars[Pillar.FRESHNESS] = freshness.score if freshness_available else 0.0

    performance_blended = performance_score is not None
    if performance_blended:
        pillars[Pillar.PERFORMANCE] = (
            PERFORMANCE_EXTERNAL_SHARE * performance_score
            + (1 - PERFORMANCE_EXTERNAL_SHARE) * pillars[Pillar.PERFORMANCE]
        )

    # ── Overall ──────────────────────────────────────
    weights = pillar_weights(site_type, freshness_available)
    overall = sum(pillars[pillar] * weights[pillar] for pillar in Pillar)
    overall = round(overall, 1)

    return ScoreBreakdown(
        site_type=site_type,
        checked_pages=checked,
        pillars={pillar: round(score, 1) for pillar, score in pillars.items()},
        weights=weights,
        overall_score=overall,
        grade=AuditEngine.calculate_grade(overall),
        total_penalty=round(sum(pillar_penalties.values()), 2),
        freshness_penalty=round(freshness_penalty, 2),
        pillar_penalties={pillar: round(p, 2) for pillar, p in pillar_penalties.items()},
        freshness_available=freshness_available,
        performance_blended=performance_blended,
        findings=findings,
        top_issues=[f.issue for f in findings[:TOP_ISSUES_LIMIT]],
        quick_wins=[f.issue for f in findings if f.quick_win][:TOP_ISSUES_LIMIT],
    )


# ─────────────────────────────────────────────
# Scoring Engine
# ─────────────────────────────────────────────

class ScoringEngine(AuditEngine):
    """
    Scores site_data.pages. Runs AFTER the crawler and link-graph engines so
    graph-derived issues are already on every page.
    """

    ENGINE_NAME = "scoring"

    async def run(self, site_data: SiteData) -> EngineResult:
        if not site_data.pages:
            logger.warning("Scoring an empty page set", audit_id=str(site_data.audit_id))

        breakdown = score_site(
            site_data.pages,
            site_type=site_data.site_type,
            freshness=site_data.freshness,
            performance_score=site_data.performance_score,
        )
        site_data.score = breakdown

        severity_counts: dict[str, int] = {}
        for finding in breakdown.findings:
            severity_counts[finding.severity.value] = severity_counts.get(finding.severity.value, 0) + 1

        return EngineResult(
            engine_name=self.ENGINE_NAME,
            audit_id=site_data.audit_id,
            status=EngineStatus.SUCCESS,
            pages_analyzed=breakdown.checked_pages,
            metadata={
                "overall_score": breakdown.overall_score,
                "grade": breakdown.grade,
                "findings": len(breakdown.findings),
                "severity_counts": severity_counts,
            },
        )
