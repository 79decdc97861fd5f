"""
Issue Catalog - static definitions driving the scoring engine.

Design:
- Every detectable issue has one IssueDefinition: pillar, severity, weight
- Definitions may cap the prevalence ratio so one noisy, near-universal
  signal cannot dominate the score
- The penalty curve is sub-linear in prevalence and never zero for an
  issue that affects at least one page
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from siteaudit.engines.base import IssueCode, Pillar, Severity


# ─────────────────────────────────────────────
# Definition Schema
# ─────────────────────────────────────────────

class IssueDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: IssueCode
    pillar: Pillar
    severity: Severity
    weight: float = Field(gt=0.0)       # Max contribution before the ratio factor
    max_ratio: float | None = Field(default=None, gt=0.0, le=1.0)
    quick_win: bool = False             # Low effort, high impact
    title: str
    recommendation: str = ""


# ─────────────────────────────────────────────
# Catalog
# ─────────────────────────────────────────────

ISSUE_DEFINITIONS: tuple[IssueDefinition, ...] = (
    # Indexability
    IssueDefinition(
        id=IssueCode.NOINDEX, pillar=Pillar.INDEXABILITY, severity=Severity.CRITICAL,
        weight=25, max_ratio=1.0, quick_win=True,
        title="Pages blocked by noindex",
        recommendation="Remove noindex from meta robots / X-Robots-Tag on pages that should rank.",
    ),
    IssueDefinition(
        id=IssueCode.ROBOTS_BLOCKED, pillar=Pillar.INDEXABILITY, severity=Severity.CRITICAL,
        weight=20, max_ratio=1.0, quick_win=True,
        title="Pages disallowed by robots.txt",
        recommendation="Relax the Disallow rules that cover content pages.",
    ),
    # Crawlability
    IssueDefinition(
        id=IssueCode.BROKEN_PAGE, pillar=Pillar.CRAWLABILITY, severity=Severity.CRITICAL,
        weight=20, max_ratio=1.0, quick_win=True,
        title="Broken pages (4xx/5xx)",
        recommendation="Fix or 301-redirect broken URLs and update the links pointing at them.",
    ),
    IssueDefinition(
        id=IssueCode.REDIRECT_CHAIN, pillar=Pillar.CRAWLABILITY, severity=Severity.MEDIUM,
        weight=6, max_ratio=0.5,
        title="Redirect chains",
        recommendation="Point internal links at the final URL so each request takes at most one hop.",
    ),
    IssueDefinition(
        id=IssueCode.DEEP_PAGE, pillar=Pillar.CRAWLABILITY, severity=Severity.MEDIUM,
        weight=5, max_ratio=1.0,
        title="Pages more than 3 clicks from the homepage",
        recommendation="Link important pages from hubs closer to the homepage.",
    ),
    # On-page
    IssueDefinition(
        id=IssueCode.SHORT_TITLE, pillar=Pillar.ON_PAGE, severity=Severity.HIGH,
        weight=10, max_ratio=1.0, quick_win=True,
        title="Missing or very short title",
        recommendation="Write a unique, descriptive title of 30-60 characters.",
    ),
    IssueDefinition(
        id=IssueCode.SHORT_META_DESCRIPTION, pillar=Pillar.ON_PAGE, severity=Severity.HIGH,
        weight=8, max_ratio=1.0, quick_win=True,
        title="Missing or very short meta description",
        recommendation="Add a meta description of 70-160 characters with a clear value proposition.",
    ),
    IssueDefinition(
        id=IssueCode.MISSING_H1, pillar=Pillar.ON_PAGE, severity=Severity.MEDIUM,
        weight=6, max_ratio=1.0, quick_win=True,
        title="Missing H1",
        recommendation="Give every page exactly one H1 describing its main topic.",
    ),
    IssueDefinition(
        id=IssueCode.MULTIPLE_H1, pillar=Pillar.ON_PAGE, severity=Severity.MEDIUM,
        weight=5, max_ratio=1.0, quick_win=True,
        title="Multiple H1 headings",
        recommendation="Keep a single H1 and demote the others to H2.",
    ),
    IssueDefinition(
        id=IssueCode.THIN_CONTENT, pillar=Pillar.ON_PAGE, severity=Severity.MEDIUM,
        weight=8, max_ratio=0.9,
        title="Thin content (under 300 words)",
        recommendation="Expand thin pages or consolidate them into stronger ones.",
    ),
    # Technical
    IssueDefinition(
        id=IssueCode.CANONICAL_MISMATCH, pillar=Pillar.TECHNICAL, severity=Severity.HIGH,
        weight=12, max_ratio=0.8, quick_win=True,
        title="Canonical points elsewhere",
        recommendation="Use self-referencing canonicals on indexable pages.",
    ),
    IssueDefinition(
        id=IssueCode.MISSING_ALT_TEXT, pillar=Pillar.TECHNICAL, severity=Severity.LOW,
        weight=5, max_ratio=0.9, quick_win=True,
        title="Images without alt text",
        recommendation="Describe meaningful images in their alt attribute.",
    ),
    IssueDefinition(
        id=IssueCode.MISSING_VIEWPORT, pillar=Pillar.TECHNICAL, severity=Severity.HIGH,
        weight=12, max_ratio=1.0, quick_win=True,
        title="Missing mobile viewport",
        recommendation='Add <meta name="viewport" content="width=device-width, initial-scale=1">.',
    ),
    IssueDefinition(
        id=IssueCode.INSECURE_TRANSPORT, pillar=Pillar.TECHNICAL, severity=Severity.CRITICAL,
        weight=15, max_ratio=1.0, quick_win=True,
        title="Pages served over HTTP",
        recommendation="Serve the site over HTTPS and 301-redirect HTTP to HTTPS.",
    ),
    IssueDefinition(
        id=IssueCode.MIXED_CONTENT, pillar=Pillar.TECHNICAL, severity=Severity.HIGH,
        weight=10, max_ratio=0.8, quick_win=True,
        title="Mixed content on HTTPS pages",
        recommendation="Load every image, script and stylesheet over HTTPS.",
    ),
    IssueDefinition(
        id=IssueCode.SLOW_RESPONSE, pillar=Pillar.TECHNICAL, severity=Severity.MEDIUM,
        weight=6, max_ratio=0.7,
        title="Slow server response (TTFB over 800 ms)",
        recommendation="Add page caching or a CDN; target a TTFB under 200 ms.",
    ),
    IssueDefinition(
        id=IssueCode.ORPHAN_PAGE, pillar=Pillar.TECHNICAL, severity=Severity.HIGH,
        weight=12, max_ratio=1.0, quick_win=True,
        title="Orphan pages (no internal links found)",
        recommendation="Link orphan pages from related content or navigation.",
    ),
    # Freshness
    IssueDefinition(
        id=IssueCode.STALE_CONTENT, pillar=Pillar.FRESHNESS, severity=Severity.HIGH,
        weight=18, max_ratio=1.0,
        title="Stale content",
        recommendation="Review and update content that has not changed in months.",
    ),
    # Performance
    IssueDefinition(
        id=IssueCode.POOR_PERFORMANCE, pillar=Pillar.PERFORMANCE, severity=Severity.CRITICAL,
        weight=20, max_ratio=1.0,
        title="Poor page-speed score",
        recommendation="Cut render-blocking resources, compress images and defer non-critical JS.",
    ),
)

_BY_ID: dict[IssueCode, IssueDefinition] = {d.id: d for d in ISSUE_DEFINITIONS}


def get_definition(code: IssueCode) -> IssueDefinition:
    return _BY_ID[code]


# ─────────────────────────────────────────────
# Penalty Formula
# ─────────────────────────────────────────────

SEVERITY_MULTIPLIERS: dict[Severity, float] = {
    Severity.CRITICAL: 1.0,
    Severity.HIGH: 0.85,
    Severity.MEDIUM: 0.65,
    Severity.LOW: 0.4,
}

PREVALENCE_EXPONENT = 0.75


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def penalty_for(definition: IssueDefinition, ratio: float) -> float:
    """
    Penalty = weight × severity multiplier × (0.2 + 2.0 × capped_ratio^0.75)

    The affine map keeps a single affected page visible (~0.2× weight) and
    tops out near 2.2× weight at full prevalence.
    """
    cap = definition.max_ratio if definition.max_ratio is not None else ratio
    capped = clamp01(min(ratio, cap))
    ratio_factor = 0.2 + 2.0 * capped ** PREVALENCE_EXPONENT
    return definition.weight * SEVERITY_MULTIPLIERS[definition.severity] * ratio_factor
