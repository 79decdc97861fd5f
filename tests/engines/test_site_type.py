"""Tests for the site-type heuristic."""

from siteaudit.engines.base import SiteType
from siteaudit.engines.crawler.site_type import SiteTypeClassifier

SEED = "https://example.com/"


def urls(*paths):
    return [f"https://example.com{p}" for p in paths]


class TestSiteTypeClassifier:

    def setup_method(self):
        self.classifier = SiteTypeClassifier()

    def test_product_paths_mean_ecommerce(self):
        assert self.classifier.classify(SEED, urls("/product/a", "/product/b")) is SiteType.ECOMMERCE

    def test_blog_paths_mean_content(self):
        assert self.classifier.classify(SEED, urls("/blog/a", "/blog/b", "/2024/05/x")) is SiteType.CONTENT

    def test_service_pages_mean_corporate(self):
        assert self.classifier.classify(SEED, urls("/about", "/contact", "/services")) is SiteType.CORPORATE

    def test_weak_evidence_is_unknown(self):
        assert self.classifier.classify(SEED, urls("/about")) is SiteType.UNKNOWN
        assert self.classifier.classify(SEED, []) is SiteType.UNKNOWN

    def test_homepage_markers(self):
        html = '<html><body class="woocommerce"><a href="/cart">Cart</a></body></html>'
        assert self.classifier.classify(SEED, [], html) is SiteType.ECOMMERCE

    def test_tie_prefers_ecommerce(self):
        candidates = urls("/product/a", "/product/b", "/blog/a", "/blog/b", "/blog/c", "/blog/d")
        scores = self.classifier.score_urls(candidates)
        assert scores[SiteType.ECOMMERCE] == scores[SiteType.CONTENT] == 4
        assert self.classifier.classify(SEED, candidates) is SiteType.ECOMMERCE

    def test_only_first_candidates_considered(self):
        candidates = urls(*[f"/page-{i}" for i in range(200)]) + urls("/product/a", "/product/b")
        assert self.classifier.classify(SEED, candidates) is SiteType.UNKNOWN
