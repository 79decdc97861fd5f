"""
URL normalization and crawlability policy.

All functions are pure and total: malformed input yields None / False,
never an exception.
"""

from __future__ import annotations

import posixpath
import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

# Query params that generate near-infinite URL variants and carry no content
STRIP_QUERY_PARAMS = frozenset({
    "add-to-cart",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "gclid",
    "fbclid",
    "wbraid",
    "gbraid",
    "mc_cid",
    "mc_eid",
    "yclid",
    "ref",
})

BLOCK_IF_QUERY_HAS = frozenset({"add-to-cart", "preview"})

STATIC_EXTENSIONS = frozenset({
    ".css", ".js", ".json", ".xml", ".rss", ".atom",
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".ico", ".bmp", ".tiff",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".tar", ".gz", ".rar", ".7z",
    ".mp3", ".mp4", ".avi", ".mov", ".wmv", ".flv", ".webm", ".ogg", ".wav",
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
})

DEFAULT_PORTS = {"http": 80, "https": 443}

_SITEMAP_PATH_RE = re.compile(r"(/sitemap(_index)?\.xml|/[^/]*-sitemap\.xml|/sitemap\d+\.xml)$")
_FEED_PATH_RE = re.compile(r"/(feed|rss)/?$")


def _split(url: str):
    """urlsplit plus port validation; None for anything that is not http(s) with a host."""
    if not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url.strip())
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        return None
    if parts.scheme.lower() not in DEFAULT_PORTS or not parts.hostname:
        return None
    return parts


def _netloc(parts) -> str:
    host = parts.hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    scheme = parts.scheme.lower()
    if parts.port is not None and parts.port != DEFAULT_PORTS[scheme]:
        host = f"{host}:{parts.port}"
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        host = f"{userinfo}@{host}"
    return host


def normalize(url: str) -> str | None:
    """
    Canonical form used for every comparison and dedup in the audit.

    - fragment dropped
    - tracking / cart-add params removed, remaining params sorted by key
    - trailing slashes stripped except for the root path
    - scheme and host lower-cased, default port dropped
    """
    parts = _split(url)
    if parts is None:
        return None

    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    params = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() not in STRIP_QUERY_PARAMS
    ]
    params.sort(key=lambda kv: kv[0])
    query = urlencode(params)

    return urlunsplit((parts.scheme.lower(), _netloc(parts), path, query, ""))


def is_crawlable(url: str) -> bool:
    """False for feeds, sitemaps, static files, API namespaces, cart and preview URLs."""
    if normalize(url) is None:
        return False
    parts = _split(url)
    path = (parts.path or "/").lower()

    if _SITEMAP_PATH_RE.search(path) or _FEED_PATH_RE.search(path):
        return False

    if posixpath.splitext(path)[1] in STATIC_EXTENSIONS:
        return False

    # WordPress REST / XML-RPC
    if path == "/wp-json" or path.startswith("/wp-json/"):
        return False
    if path == "/xmlrpc.php" or path.startswith("/xmlrpc.php/"):
        return False

    for key, _ in parse_qsl(parts.query, keep_blank_values=True):
        if key.lower() in BLOCK_IF_QUERY_HAS:
            return False
    return True


def origin_of(url: str) -> str | None:
    parts = _split(url)
    if parts is None:
        return None
    scheme = parts.scheme.lower()
    host = parts.hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    port = parts.port or DEFAULT_PORTS[scheme]
    if port != DEFAULT_PORTS[scheme]:
        host = f"{host}:{port}"
    return f"{scheme}://{host}"


def same_origin(a: str, b: str) -> bool:
    """Scheme, host and (effective) port equality."""
    origin_a = origin_of(a)
    return origin_a is not None and origin_a == origin_of(b)


def same_canonical(a: str, b: str) -> bool:
    na = normalize(a)
    return na is not None and na == normalize(b)


def resolve(href: str, base_url: str) -> str | None:
    """Absolute http(s) URL for an href found on base_url, fragment dropped."""
    try:
        absolute = urljoin(base_url, href.strip())
    except (ValueError, AttributeError):
        return None
    parts = _split(absolute)
    if parts is None:
        return None
    return urlunsplit(parts._replace(fragment=""))
