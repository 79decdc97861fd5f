"""
Link Graph Engine - reachability and inbound-link analysis over crawled pages.

The graph only holds outbound edges of pages that were actually crawled, so
depth and orphan results are estimates bounded by the sample.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

import structlog

from siteaudit.core.url import normalize, same_origin
from siteaudit.engines.base import (
    AuditEngine,
    EngineResult,
    EngineStatus,
    IssueCode,
    Page,
    SiteData,
)

logger = structlog.get_logger(__name__)

UNREACHABLE = -1
DEEP_PAGE_THRESHOLD = 3

LinkGraph = dict[str, set[str]]


def build_link_graph(pages: list[Page], origin: str | None = None) -> LinkGraph:
    """Adjacency map: normalized page URL -> normalized same-origin link targets."""
    graph: LinkGraph = {}
    for page in pages:
        source = normalize(page.url) or page.url
        targets = graph.setdefault(source, set())
        for link in page.links_internal:
            target = normalize(link)
            if target is None:
                continue
            if origin is not None and not same_origin(target, origin):
                continue
            targets.add(target)
    return graph


def compute_depths(graph: LinkGraph, seed_url: str) -> dict[str, int]:
    """BFS from the seed over outbound edges; first visit fixes the depth."""
    seed = normalize(seed_url) or seed_url
    depths = {seed: 0}
    queue = deque([seed])
    while queue:
        current = queue.popleft()
        for target in graph.get(current, ()):
            if target not in depths:
                depths[target] = depths[current] + 1
                queue.append(target)
    return depths


def count_inbound_links(graph: LinkGraph) -> dict[str, int]:
    """Distinct source pages linking to each URL. Self-links are not counted."""
    inbound: dict[str, int] = {}
    for source, targets in graph.items():
        for target in targets:
            if target != source:
                inbound[target] = inbound.get(target, 0) + 1
    return inbound


@dataclass
class LinkGraphReport:
    seed_url: str
    depths: dict[str, int] = field(default_factory=dict)      # Every crawled page; UNREACHABLE if not visited
    inbound: dict[str, int] = field(default_factory=dict)     # Every crawled page
    orphans: list[str] = field(default_factory=list)
    deep_pages: list[str] = field(default_factory=list)

    @property
    def unreachable(self) -> list[str]:
        return [url for url, depth in self.depths.items() if depth == UNREACHABLE]

    @property
    def max_depth(self) -> int:
        return max((d for d in self.depths.values() if d != UNREACHABLE), default=0)


def analyze_link_graph(pages: list[Page], seed_url: str, origin: str | None = None) -> LinkGraphReport:
    seed = normalize(seed_url) or seed_url
    graph = build_link_graph(pages, origin)
    visited = compute_depths(graph, seed)
    inbound = count_inbound_links(graph)

    report = LinkGraphReport(seed_url=seed)
    for page in pages:
        url = normalize(page.url) or page.url
        depth = visited.get(url, UNREACHABLE)
        report.depths[url] = depth
        report.inbound[url] = inbound.get(url, 0)

        is_homepage = url == seed
        if is_homepage:
            continue
        if report.inbound[url] == 0:
            report.orphans.append(url)
        if depth != UNREACHABLE and depth > DEEP_PAGE_THRESHOLD:
            report.deep_pages.append(url)
    return report


def annotate_pages(pages: list[Page], report: LinkGraphReport) -> None:
    """Write depth / inbound counts onto each page and append graph-derived issues."""
    orphans = set(report.orphans)
    deep = set(report.deep_pages)
    for page in pages:
        url = normalize(page.url) or page.url
        page.depth = report.depths.get(url, UNREACHABLE)
        page.inbound_links = report.inbound.get(url, 0)
        if url in orphans and IssueCode.ORPHAN_PAGE not in page.issues:
            page.issues.append(IssueCode.ORPHAN_PAGE)
        if url in deep and IssueCode.DEEP_PAGE not in page.issues:
            page.issues.append(IssueCode.DEEP_PAGE)


class LinkGraphEngine(AuditEngine):
    """Runs after the crawler: merges orphan and deep-page issues into site_data.pages."""

    ENGINE_NAME = "link_graph"

    async def run(self, site_data: SiteData) -> EngineResult:
        if not site_data.pages:
            return EngineResult(
                engine_name=self.ENGINE_NAME,
                audit_id=site_data.audit_id,
                status=EngineStatus.SKIPPED,
                error_message="No crawled pages",
            )

        report = analyze_link_graph(site_data.pages, site_data.seed_url, site_data.origin)
        annotate_pages(site_data.pages, report)

        return EngineResult(
            engine_name=self.ENGINE_NAME,
            audit_id=site_data.audit_id,
            status=EngineStatus.SUCCESS,
            pages_analyzed=len(site_data.pages),
            metadata={
                "orphans": len(report.orphans),
                "deep_pages": len(report.deep_pages),
                "unreachable": len(report.unreachable),
                "max_depth": report.max_depth,
            },
        )
