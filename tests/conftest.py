"""
Shared test doubles. Nothing here touches the network: sites are served from
an in-memory URL map and every sleep is recorded instead of awaited.
"""

from __future__ import annotations

import pytest

from siteaudit.engines.crawler.fetcher import FetchResponse

LONG_DESCRIPTION = "A meta description that is comfortably longer than fifty characters in total."


def make_html(
    title: str | None = "A descriptive page title",
    description: str | None = LONG_DESCRIPTION,
    links: tuple[str, ...] | list[str] = (),
    h1: int = 1,
    words: int = 320,
    viewport: bool = True,
    extra_head: str = "",
    extra_body: str = "",
) -> str:
    head = []
    if title is not None:
        head.append(f"<title>{title}</title>")
    if description is not None:
        head.append(f'<meta name="description" content="{description}">')
    if viewport:
        head.append('<meta name="viewport" content="width=device-width, initial-scale=1">')
    head.append(extra_head)
    body = [f"<h1>Heading {i}</h1>" for i in range(h1)]
    body.append("<p>" + " ".join(["word"] * words) + "</p>")
    body.extend(f'<a href="{href}">link</a>' for href in links)
    body.append(extra_body)
    return f"<html><head>{''.join(head)}</head><body>{''.join(body)}</body></html>"


class FakeFetcher:
    """
    Serves a fixed site. Values may be an HTML string (200 text/html), a
    FetchResponse, or an exception instance to raise. Unknown URLs are 404.
    """

    def __init__(self, pages: dict[str, object] | None = None):
        self.pages = dict(pages or {})
        self.calls: list[str] = []

    async def fetch_html(self, url: str, timeout_ms: int, max_bytes: int) -> FetchResponse:
        self.calls.append(url)
        entry = self.pages.get(url)
        if isinstance(entry, BaseException):
            raise entry
        if isinstance(entry, FetchResponse):
            return entry
        if entry is None:
            return FetchResponse(url=url, status=404, final_url=url, content_type="text/html", body="")
        return FetchResponse(
            url=url,
            status=200,
            final_url=url,
            content_type="text/html; charset=utf-8",
            body=entry,
            ttfb_ms=50.0,
        )


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def html_page():
    return make_html


@pytest.fixture
def fake_fetcher():
    return FakeFetcher


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def clock():
    return FakeClock()
