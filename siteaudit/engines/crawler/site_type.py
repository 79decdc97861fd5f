"""
Site-type heuristic: URL path patterns plus homepage content sniffing.

The crawler and scorer only depend on the SiteType value, so this can be
swapped for any other classifier.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

import structlog

from siteaudit.engines.base import SiteType

logger = structlog.get_logger(__name__)

MAX_CANDIDATES = 200
MIN_CONFIDENT_SCORE = 3

_ECOMMERCE_PATH = re.compile(r"\bproduct\b|/product/|/shop/|/cart/|/checkout/|/my-account/|/product-category/")
_CONTENT_PATH = re.compile(r"/blog/|/tag/|/category/|/\d{4}/\d{2}/")
_CORPORATE_PATH = re.compile(r"/about|/contact|/services|/portfolio|/team")


class SiteTypeClassifier:

    def score_urls(self, urls: list[str]) -> dict[SiteType, int]:
        scores = {SiteType.ECOMMERCE: 0, SiteType.CONTENT: 0, SiteType.CORPORATE: 0}
        for url in urls:
            try:
                path = urlsplit(url).path.lower()
            except ValueError:
                continue
            # Normalized URLs drop the trailing slash, so match "/x" as "/x/"
            path = f"{path}/"
            if _ECOMMERCE_PATH.search(path):
                scores[SiteType.ECOMMERCE] += 2
            if _CONTENT_PATH.search(path):
                scores[SiteType.CONTENT] += 1
            if _CORPORATE_PATH.search(path):
                scores[SiteType.CORPORATE] += 1
        return scores

    def score_homepage(self, html: str, scores: dict[SiteType, int]) -> None:
        text = html.lower()
        if (
            "woocommerce" in text
            or "shopify" in text
            or "add-to-cart" in text
            or ("cart" in text and "checkout" in text)
        ):
            scores[SiteType.ECOMMERCE] += 4
        if "article" in text and ("author" in text or "post" in text):
            scores[SiteType.CONTENT] += 2
        if "services" in text or "about us" in text:
            scores[SiteType.CORPORATE] += 1

    def classify(self, seed_url: str, candidates: list[str], homepage_html: str | None = None) -> SiteType:
        scores = self.score_urls([seed_url, *candidates[:MAX_CANDIDATES]])
        if homepage_html:
            self.score_homepage(homepage_html, scores)

        best = max(scores.values())
        if best < MIN_CONFIDENT_SCORE:
            site_type = SiteType.UNKNOWN
        else:
            # Dict order is the tie-break: ecommerce, content, corporate
            site_type = next(t for t, score in scores.items() if score == best)

        logger.info("Site type detected", site_type=site_type.value, scores={t.value: s for t, s in scores.items()})
        return site_type
