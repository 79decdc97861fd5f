"""
Exception hierarchy for the audit core.

AuditError subclasses abort a run and are surfaced to callers as a failed
report carrying their reason code. The fetch-layer exceptions never leave the
crawler: a worker converts them into a degraded page record.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class FailureReason(str, Enum):
    INVALID_SEED_URL = "invalid_seed_url"
    SITE_UNREACHABLE = "site_unreachable"
    CRAWL_FAILED = "crawl_failed"
    SCORING_FAILED = "scoring_failed"


class AuditError(Exception):
    """Fatal, run-level failure."""

    reason: FailureReason = FailureReason.CRAWL_FAILED

    def __init__(self, message: str, reason: FailureReason | None = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class InvalidSeedURLError(AuditError):
    reason = FailureReason.INVALID_SEED_URL

    def __init__(self, url: str):
        super().__init__(f"Seed URL is not a valid http(s) URL: {url!r}")
        self.url = url


class SiteUnreachableError(AuditError):
    reason = FailureReason.SITE_UNREACHABLE

    def __init__(self, url: str, detail: str | None = None):
        message = f"No sampled page of {url} could be reached"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.url = url


class CircuitOpenError(Exception):
    """Raised instead of calling an origin whose circuit is open."""

    def __init__(self, origin: str):
        super().__init__(f"Circuit breaker is open for {origin}")
        self.origin = origin


class RetryableStatusError(Exception):
    """An HTTP reply whose status is worth retrying (408, 429, 5xx)."""

    def __init__(self, response: Any, status: int):
        super().__init__(f"Retryable HTTP status {status}")
        self.response = response
        self.status = status
