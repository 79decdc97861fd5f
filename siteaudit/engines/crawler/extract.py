"""
On-page signal extraction from static HTML.

Best-effort: a document BeautifulSoup cannot make sense of yields empty
signals instead of an exception, so one broken page never aborts a crawl.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from bs4 import BeautifulSoup

from siteaudit.core.url import is_crawlable, normalize, resolve, same_origin

logger = structlog.get_logger(__name__)

TITLE_MAX_CHARS = 300
META_DESCRIPTION_MAX_CHARS = 400

# Tags whose src pulls a subresource into the page
SUBRESOURCE_TAGS = ("img", "script", "iframe", "source", "audio", "video", "embed")
NON_CONTENT_TAGS = ("script", "style", "noscript", "template")
PAGINATION_RELS = {"next", "prev"}


@dataclass
class PageSignals:
    title: str | None = None
    meta_description: str | None = None
    canonical: str | None = None
    meta_robots: str | None = None
    h1_count: int = 0
    images_missing_alt: int = 0
    has_viewport: bool = False
    word_count: int = 0
    references_http_resources: bool = False
    links: list[str] = field(default_factory=list)   # Absolute, fragment-free, first-seen order


def _squash(text: str) -> str:
    return " ".join(text.split())


def _meta_content(soup: BeautifulSoup, name: str) -> str | None:
    for tag in soup.find_all("meta", attrs={"name": True}):
        if tag["name"].strip().lower() == name:
            content = tag.get("content")
            return _squash(content) if content is not None else None
    return None


def _has_meta(soup: BeautifulSoup, name: str) -> bool:
    return any(tag["name"].strip().lower() == name for tag in soup.find_all("meta", attrs={"name": True}))


def _rel_values(tag) -> set[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return {value.lower() for value in rel}


def extract_links(
    soup: BeautifulSoup,
    base_url: str,
    max_links: int,
    origin: str | None = None,
) -> list[str]:
    """
    Anchor hrefs plus rel=next/prev pagination links, resolved and capped.

    With `origin`, links are normalized and only same-origin crawlable ones
    are kept, so off-site anchors never use up the cap.
    """
    links: list[str] = []
    seen: set[str] = set()

    for tag in soup.find_all(["a", "link"], href=True):
        if len(links) >= max_links:
            break
        if tag.name == "link" and not (_rel_values(tag) & PAGINATION_RELS):
            continue
        href = tag["href"].strip()
        if not href or href.startswith(("#", "mailto:", "tel:", "javascript:", "data:")):
            continue
        absolute = resolve(href, base_url)
        if absolute and origin is not None:
            absolute = normalize(absolute)
            if not absolute or not same_origin(absolute, origin) or not is_crawlable(absolute):
                continue
        if absolute and absolute not in seen:
            seen.add(absolute)
            links.append(absolute)
    return links


def _references_http(soup: BeautifulSoup) -> bool:
    for tag in soup.find_all(SUBRESOURCE_TAGS, src=True):
        if tag["src"].strip().lower().startswith("http://"):
            return True
    for tag in soup.find_all("link", href=True):
        if tag["href"].strip().lower().startswith("http://"):
            return True
    return False


def _count_words(soup: BeautifulSoup) -> int:
    root = soup.body or soup
    for tag in root.find_all(NON_CONTENT_TAGS):
        tag.decompose()
    return len(root.get_text(separator=" ").split())


def extract_signals(
    html: str,
    base_url: str,
    max_links: int = 250,
    origin: str | None = None,
) -> PageSignals:
    if not html:
        return PageSignals()

    try:
        soup = BeautifulSoup(html, "lxml")

        title_tag = soup.find("title")
        title = _squash(title_tag.get_text())[:TITLE_MAX_CHARS] if title_tag else None

        description = _meta_content(soup, "description")
        robots = _meta_content(soup, "robots")

        canonical = None
        for tag in soup.find_all("link", href=True):
            if "canonical" in _rel_values(tag):
                canonical = tag["href"].strip() or None
                break

        images_missing_alt = sum(
            1 for img in soup.find_all("img") if not (img.get("alt") or "").strip()
        )

        signals = PageSignals(
            title=title,
            meta_description=description[:META_DESCRIPTION_MAX_CHARS] if description else description,
            canonical=canonical,
            meta_robots=robots.lower() if robots else robots,
            h1_count=len(soup.find_all("h1")),
            images_missing_alt=images_missing_alt,
            has_viewport=_has_meta(soup, "viewport"),
            references_http_resources=_references_http(soup),
            links=extract_links(soup, base_url, max_links, origin),
        )
        # Destructive, so it runs last
        signals.word_count = _count_words(soup)
        return signals

    except Exception as e:
        logger.warning("HTML parse error", url=base_url, error=str(e))
        return PageSignals()
