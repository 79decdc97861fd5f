"""
Stratified candidate selection.

Candidates are bucketed by URL path, then picked against a per-site-type
quota table so the initial sample covers products, categories, posts and
plain pages instead of whatever the sitemap lists first.
"""

from __future__ import annotations

import math
import re
from collections import deque
from urllib.parse import urlsplit

from siteaudit.engines.base import PageBucket, SiteType

# Checked in order; first match wins
_BUCKET_PATTERNS: tuple[tuple[PageBucket, re.Pattern], ...] = (
    (PageBucket.UTILITY, re.compile(r"/(cart|checkout|my-account|login|register|wp-admin)(/|$)")),
    (PageBucket.PRODUCT, re.compile(r"/(product|products|shop)(/|$)")),
    (PageBucket.CATEGORY, re.compile(r"/(product-category|product_cat|category|tag)(/|$)")),
    (PageBucket.BLOG, re.compile(r"/(blog|post)(/|$)|/\d{4}/\d{2}(/|$)")),
    (PageBucket.PAGE, re.compile(r"/(about|contact|services|portfolio|team|faq)")),
)

BUCKET_ORDER: tuple[PageBucket, ...] = (
    PageBucket.PAGE,
    PageBucket.PRODUCT,
    PageBucket.CATEGORY,
    PageBucket.BLOG,
    PageBucket.OTHER,
    PageBucket.UTILITY,
)

QUOTA_REFERENCE_SLOTS = 50

_CONTENT_QUOTAS = {PageBucket.PAGE: 16, PageBucket.BLOG: 16, PageBucket.OTHER: 12, PageBucket.CATEGORY: 6}

QUOTA_TABLE: dict[SiteType, dict[PageBucket, int]] = {
    SiteType.ECOMMERCE: {
        PageBucket.PRODUCT: 20,
        PageBucket.CATEGORY: 10,
        PageBucket.BLOG: 10,
        PageBucket.PAGE: 6,
        PageBucket.OTHER: 4,
    },
    SiteType.CORPORATE: {
        PageBucket.PAGE: 22,
        PageBucket.BLOG: 16,
        PageBucket.OTHER: 8,
        PageBucket.CATEGORY: 4,
    },
    SiteType.CONTENT: _CONTENT_QUOTAS,
    SiteType.UNKNOWN: _CONTENT_QUOTAS,
}


def classify_url(url: str) -> PageBucket:
    try:
        path = urlsplit(url).path.lower()
    except ValueError:
        return PageBucket.OTHER
    for bucket, pattern in _BUCKET_PATTERNS:
        if pattern.search(path):
            return bucket
    return PageBucket.OTHER


def scaled_quotas(site_type: SiteType, limit: int) -> list[tuple[PageBucket, int]]:
    """
    Quotas for a selection of `limit` URLs, largest first.

    The table is written for 50 slots and scaled up (ceil) so small budgets
    still give each favoured bucket at least one slot.
    """
    table = QUOTA_TABLE.get(site_type, _CONTENT_QUOTAS)
    quotas = [
        (bucket, math.ceil(table[bucket] * limit / QUOTA_REFERENCE_SLOTS))
        for bucket in BUCKET_ORDER
        if table.get(bucket, 0) > 0
    ]
    # sorted() is stable, so equal quotas keep BUCKET_ORDER
    return sorted(quotas, key=lambda item: -item[1])


def pick_stratified(urls: list[str], limit: int, site_type: SiteType) -> list[str]:
    """
    Select up to `limit` URLs: quota pass first, then round-robin over
    BUCKET_ORDER until the limit is reached or every bucket is empty.
    Deterministic for a given input order.
    """
    if limit <= 0:
        return []

    buckets: dict[PageBucket, deque[str]] = {bucket: deque() for bucket in BUCKET_ORDER}
    for url in urls:
        buckets[classify_url(url)].append(url)

    selected: list[str] = []

    for bucket, quota in scaled_quotas(site_type, limit):
        pool = buckets[bucket]
        taken = 0
        while pool and taken < quota and len(selected) < limit:
            selected.append(pool.popleft())
            taken += 1

    while len(selected) < limit:
        progressed = False
        for bucket in BUCKET_ORDER:
            pool = buckets[bucket]
            if not pool:
                continue
            selected.append(pool.popleft())
            progressed = True
            if len(selected) >= limit:
                break
        if not progressed:
            break

    return selected


def bucket_breakdown(urls: list[str]) -> dict[PageBucket, int]:
    counts = {bucket: 0 for bucket in BUCKET_ORDER}
    for url in urls:
        counts[classify_url(url)] += 1
    return counts
