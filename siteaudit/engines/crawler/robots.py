"""robots.txt loading and evaluation for one origin."""

from __future__ import annotations

from urllib.robotparser import RobotFileParser

import structlog

from siteaudit.core.config import CrawlLimits, get_settings
from siteaudit.engines.crawler.fetcher import HtmlFetcher

logger = structlog.get_logger(__name__)


class RobotsHandler:
    """Parse and evaluate robots.txt rules. A missing or unreadable file allows everything."""

    def __init__(self, origin: str, user_agent: str | None = None):
        self.origin = origin.rstrip("/")
        self.user_agent = user_agent or get_settings().CRAWLER_USER_AGENT
        self.status = 0
        self._parser: RobotFileParser | None = None

    @property
    def robots_url(self) -> str:
        return f"{self.origin}/robots.txt"

    @property
    def found(self) -> bool:
        return self._parser is not None

    @classmethod
    def from_text(cls, origin: str, text: str, user_agent: str | None = None) -> RobotsHandler:
        handler = cls(origin, user_agent)
        handler.status = 200
        handler._parse(text)
        return handler

    def _parse(self, text: str) -> None:
        parser = RobotFileParser(self.robots_url)
        parser.parse(text.splitlines())
        self._parser = parser

    async def load(self, fetcher: HtmlFetcher, limits: CrawlLimits) -> None:
        try:
            response = await fetcher.fetch_html(
                self.robots_url, limits.per_page_timeout_ms, limits.max_html_bytes
            )
        except Exception as e:
            logger.debug("Could not fetch robots.txt", origin=self.origin, error=str(e))
            return

        self.status = response.status
        if 200 <= response.status < 400:
            self._parse(response.body)
        else:
            logger.debug("No robots.txt", origin=self.origin, status=response.status)

    def can_fetch(self, url: str) -> bool:
        if self._parser is None:
            return True
        return self._parser.can_fetch(self.user_agent, url)

    def sitemap_urls(self) -> list[str]:
        if self._parser is None:
            return []
        return list(self._parser.site_maps() or [])
