"""Tests for URL normalization and the crawlability policy."""

import pytest

from siteaudit.core.url import (
    is_crawlable,
    normalize,
    origin_of,
    resolve,
    same_canonical,
    same_origin,
)


SAMPLE_URLS = [
    "https://example.com",
    "https://Example.COM:443/a/b/?utm_source=x&b=2&a=1#frag",
    "http://example.com:8080/path/?q=hello+world&gclid=abc",
    "https://example.com/search?z=1&a=2&a=1",
    "https://example.com/%7Euser/page/",
    "https://example.com/?ref=twitter",
]


# ─────────────────────────────────────────────
# normalize
# ─────────────────────────────────────────────

class TestNormalize:

    def test_strips_fragment_tracking_and_sorts_params(self):
        result = normalize("https://Example.COM:443/a/b/?utm_source=x&b=2&a=1#frag")
        assert result == "https://example.com/a/b?a=1&b=2"

    def test_root_path_keeps_slash(self):
        assert normalize("https://example.com") == "https://example.com/"
        assert normalize("https://example.com/") == "https://example.com/"

    def test_trailing_slash_removed_for_non_root(self):
        assert normalize("https://example.com/about/") == "https://example.com/about"

    def test_non_default_port_kept(self):
        assert normalize("http://example.com:8080/x") == "http://example.com:8080/x"

    def test_default_port_dropped(self):
        assert normalize("http://example.com:80/x") == "http://example.com/x"

    def test_cart_and_click_ids_removed(self):
        result = normalize("https://example.com/p?add-to-cart=5&fbclid=1&id=7")
        assert result == "https://example.com/p?id=7"

    @pytest.mark.parametrize("bad", [
        "",
        "not a url",
        "ftp://example.com/file",
        "mailto:someone@example.com",
        "javascript:void(0)",
        "http://",
        "http://example.com:99999/",
        None,
    ])
    def test_invalid_input_yields_none(self, bad):
        assert normalize(bad) is None

    @pytest.mark.parametrize("url", SAMPLE_URLS)
    def test_idempotent(self, url):
        once = normalize(url)
        assert once is not None
        assert normalize(once) == once


# ─────────────────────────────────────────────
# is_crawlable
# ─────────────────────────────────────────────

class TestIsCrawlable:

    @pytest.mark.parametrize("url", [
        "https://example.com/",
        "https://example.com/about",
        "https://example.com/blog/2024/05/post",
        "https://example.com/shop?page=2",
    ])
    def test_html_pages_are_crawlable(self, url):
        assert is_crawlable(url)

    @pytest.mark.parametrize("url", [
        "https://example.com/sitemap.xml",
        "https://example.com/sitemap_index.xml",
        "https://example.com/post-sitemap.xml",
        "https://example.com/feed",
        "https://example.com/blog/feed/",
        "https://example.com/rss",
        "https://example.com/assets/site.css",
        "https://example.com/app.js",
        "https://example.com/img/logo.PNG",
        "https://example.com/files/report.pdf",
        "https://example.com/fonts/x.woff2",
        "https://example.com/wp-json/wp/v2/posts",
        "https://example.com/xmlrpc.php",
        "https://example.com/product/a?add-to-cart=12",
        "https://example.com/page?preview=true",
    ])
    def test_non_html_endpoints_rejected(self, url):
        assert not is_crawlable(url)

    @pytest.mark.parametrize("url", ["", "nonsense", "ftp://example.com/", "mailto:a@b.c"])
    def test_invalid_input_is_not_crawlable(self, url):
        assert not is_crawlable(url)

    @pytest.mark.parametrize("url", SAMPLE_URLS + [
        "https://example.com/style.css",
        "garbage",
        "https://example.com/feed",
    ])
    def test_crawlable_implies_normalizable(self, url):
        if is_crawlable(url):
            assert normalize(url) is not None


# ─────────────────────────────────────────────
# Origin / canonical comparison
# ─────────────────────────────────────────────

class TestComparison:

    def test_same_origin_ignores_path_and_default_port(self):
        assert same_origin("https://example.com/a", "https://example.com:443/b?x=1")

    def test_scheme_host_and_port_must_match(self):
        assert not same_origin("http://example.com/", "https://example.com/")
        assert not same_origin("https://example.com/", "https://www.example.com/")
        assert not same_origin("http://example.com/", "http://example.com:8080/")

    def test_same_origin_false_for_invalid(self):
        assert not same_origin("nonsense", "nonsense")

    def test_origin_of(self):
        assert origin_of("https://Example.com/a/b?c=1") == "https://example.com"
        assert origin_of("http://example.com:8080/") == "http://example.com:8080"
        assert origin_of("bad") is None

    def test_same_canonical(self):
        assert same_canonical("https://example.com/a/", "https://example.com/a?utm_source=news")
        assert not same_canonical("https://example.com/a", "https://example.com/b")
        assert not same_canonical("bad", "bad")

    def test_resolve_relative_href(self):
        assert resolve("/x#y", "https://example.com/a/b") == "https://example.com/x"
        assert resolve("c", "https://example.com/a/b") == "https://example.com/a/c"

    def test_resolve_rejects_non_http(self):
        assert resolve("mailto:a@b.c", "https://example.com/") is None
