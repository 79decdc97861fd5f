"""Tests for the scoring model and the freshness summary."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from siteaudit.core.issues import get_definition, penalty_for
from siteaudit.engines.base import (
    EngineStatus,
    FreshnessInput,
    IssueCode,
    Page,
    Pillar,
    SiteData,
    SiteType,
)
from siteaudit.engines.scoring.engine import (
    MAX_EXAMPLE_URLS,
    PILLAR_WEIGHTS,
    ScoringEngine,
    count_issues,
    pillar_weights,
    score_site,
)
from siteaudit.engines.scoring.freshness import calculate_freshness

ORIGIN = "https://example.com"


def pages_with(*issue_sets) -> list[Page]:
    return [
        Page(url=f"{ORIGIN}/p{i}", final_url=f"{ORIGIN}/p{i}", status=200, issues=list(issues))
        for i, issues in enumerate(issue_sets)
    ]


# ─────────────────────────────────────────────
# Weights
# ─────────────────────────────────────────────

class TestPillarWeights:

    @pytest.mark.parametrize("site_type", list(SiteType))
    @pytest.mark.parametrize("available", [True, False])
    def test_weights_sum_to_one(self, site_type, available):
        assert sum(pillar_weights(site_type, available).values()) == pytest.approx(1.0)

    def test_missing_freshness_redistributed_evenly(self):
        weights = pillar_weights(SiteType.ECOMMERCE, freshness_available=False)
        assert weights[Pillar.FRESHNESS] == 0.0
        assert weights[Pillar.INDEXABILITY] == pytest.approx(0.15 + 0.03)
        assert weights[Pillar.PERFORMANCE] == pytest.approx(0.20 + 0.03)

    def test_table_untouched(self):
        pillar_weights(SiteType.CORPORATE, freshness_available=False)
        assert PILLAR_WEIGHTS[SiteType.CORPORATE][Pillar.FRESHNESS] == 0.16


# ─────────────────────────────────────────────
# score_site
# ─────────────────────────────────────────────

class TestScoreSite:

    def test_clean_site_scores_full(self):
        score = score_site(pages_with([], []))
        assert score.overall_score == 100.0
        assert score.grade == "A"
        assert score.findings == []
        assert score.top_issues == []

    def test_noindex_everywhere(self):
        score = score_site(pages_with([IssueCode.NOINDEX], [IssueCode.NOINDEX]))

        assert score.pillars[Pillar.INDEXABILITY] == 45.0
        assert score.pillar_penalties[Pillar.INDEXABILITY] == 55.0
        assert score.overall_score == pytest.approx(90.1)
        assert score.grade == "A"
        finding = score.findings[0]
        assert finding.issue is IssueCode.NOINDEX
        assert finding.affected_pages == 2
        assert finding.ratio == 1.0

    def test_only_present_issues_penalized(self):
        score = score_site(pages_with([IssueCode.MISSING_H1], []))
        assert [f.issue for f in score.findings] == [IssueCode.MISSING_H1]
        assert score.pillar_penalties[Pillar.INDEXABILITY] == 0.0
        assert score.pillars[Pillar.TECHNICAL] == 100.0

    def test_pillar_floor_at_zero(self):
        heavy = [
            IssueCode.MISSING_VIEWPORT, IssueCode.INSECURE_TRANSPORT, IssueCode.ORPHAN_PAGE,
            IssueCode.CANONICAL_MISMATCH, IssueCode.SLOW_RESPONSE,
        ]
        score = score_site(pages_with(heavy, heavy))
        assert score.pillar_penalties[Pillar.TECHNICAL] > 100
        assert score.pillars[Pillar.TECHNICAL] == 0.0

    def test_findings_sorted_and_top_issues_capped(self):
        issues = [
            IssueCode.NOINDEX, IssueCode.BROKEN_PAGE, IssueCode.SHORT_TITLE, IssueCode.MISSING_H1,
            IssueCode.THIN_CONTENT, IssueCode.MISSING_ALT_TEXT, IssueCode.SLOW_RESPONSE,
        ]
        score = score_site(pages_with(issues))

        penalties = [f.penalty for f in score.findings]
        assert penalties == sorted(penalties, reverse=True)
        assert len(score.top_issues) == 5
        assert score.top_issues[0] is IssueCode.NOINDEX
        assert len(score.quick_wins) == 5
        assert all(get_definition(code).quick_win for code in score.quick_wins)
        assert IssueCode.THIN_CONTENT not in score.quick_wins

    def test_example_urls_capped(self):
        score = score_site(pages_with(*[[IssueCode.SHORT_TITLE]] * 30))
        finding = score.findings[0]
        assert finding.affected_pages == 30
        assert len(finding.example_urls) == MAX_EXAMPLE_URLS

    def test_duplicate_codes_on_a_page_count_once(self):
        counts, _ = count_issues(pages_with([IssueCode.MISSING_H1, IssueCode.MISSING_H1]))
        assert counts == {IssueCode.MISSING_H1: 1}

    def test_freshness_pillar_uses_external_score(self):
        freshness = FreshnessInput(score=80, stale_count=2, total_items=10)
        score = score_site(pages_with([]), freshness=freshness)

        assert score.freshness_available
        assert score.pillars[Pillar.FRESHNESS] == 80.0
        assert score.overall_score == pytest.approx(97.0)
        stale = next(f for f in score.findings if f.issue is IssueCode.STALE_CONTENT)
        assert stale.affected_pages == 2
        assert stale.checked_pages == 10
        expected = penalty_for(get_definition(IssueCode.STALE_CONTENT), 0.2)
        assert stale.penalty == pytest.approx(round(expected, 2))
        assert score.freshness_penalty == pytest.approx(round(expected, 2))

    def test_empty_freshness_treated_as_unavailable(self):
        score = score_site(pages_with([]), freshness=FreshnessInput(score=0, total_items=0))
        assert not score.freshness_available
        assert score.weights[Pillar.FRESHNESS] == 0.0
        assert score.overall_score == 100.0

    def test_poor_external_performance(self):
        score = score_site(pages_with([]), performance_score=40)

        assert score.performance_blended
        # penalty 44 -> 56 penalty score, blended 0.4 * 40 + 0.6 * 56
        assert score.pillars[Pillar.PERFORMANCE] == pytest.approx(49.6)
        assert IssueCode.POOR_PERFORMANCE in [f.issue for f in score.findings]

    def test_good_external_performance(self):
        score = score_site(pages_with([]), performance_score=90)
        assert score.pillars[Pillar.PERFORMANCE] == pytest.approx(96.0)
        assert score.findings == []

    def test_zero_pages_well_formed(self):
        score = score_site([])
        assert score.checked_pages == 0
        assert score.overall_score == 100.0
        assert set(score.pillars) == set(Pillar)

    def test_site_type_changes_weights(self):
        pages = pages_with([IssueCode.MISSING_VIEWPORT])
        ecommerce = score_site(pages, SiteType.ECOMMERCE)
        corporate = score_site(pages, SiteType.CORPORATE)
        assert ecommerce.weights != corporate.weights
        assert ecommerce.site_type is SiteType.ECOMMERCE


class TestScoringEngine:

    @pytest.mark.asyncio
    async def test_sets_score_on_site_data(self):
        site_data = SiteData(
            audit_id=uuid4(),
            seed_url=f"{ORIGIN}/",
            origin=ORIGIN,
            pages=pages_with([IssueCode.NOINDEX], []),
        )

        result = await ScoringEngine().execute(site_data)

        assert result.status == EngineStatus.SUCCESS
        assert site_data.score is not None
        assert result.metadata["grade"] == site_data.score.grade
        assert result.metadata["severity_counts"] == {"critical": 1}


# ─────────────────────────────────────────────
# Freshness
# ─────────────────────────────────────────────

class TestCalculateFreshness:

    NOW = datetime(2024, 7, 1, tzinfo=timezone.utc)

    def test_mixed_dates(self):
        result = calculate_freshness(
            ["2024-06-01T00:00:00Z", datetime(2023, 1, 1), "garbage", "2024-05-01"],
            now=self.NOW,
        )
        assert result.total_items == 4
        assert result.stale_count == 2
        assert result.score == 50.0

    def test_no_dates(self):
        result = calculate_freshness([], now=self.NOW)
        assert result.total_items == 0
        assert not result.available

    def test_threshold_boundary_is_stale(self):
        result = calculate_freshness([self.NOW - timedelta(days=180)], now=self.NOW)
        assert result.stale_count == 1

    def test_custom_threshold(self):
        result = calculate_freshness([self.NOW - timedelta(days=45)], threshold_months=1, now=self.NOW)
        assert result.stale_count == 1
        assert result.score == 0.0
