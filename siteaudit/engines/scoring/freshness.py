"""Content-age summary feeding the freshness pillar."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

from siteaudit.engines.base import FreshnessInput

DAYS_PER_MONTH = 30


def _as_datetime(value: datetime | str) -> datetime | None:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def calculate_freshness(
    modified_dates: Iterable[datetime | str],
    threshold_months: int = 6,
    now: datetime | None = None,
) -> FreshnessInput:
    """
    Share of items modified within `threshold_months` (30-day months), 0-100.

    Unparseable dates count as stale. No dates at all gives total_items=0,
    which the scorer treats as "freshness unavailable".
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    threshold = timedelta(days=threshold_months * DAYS_PER_MONTH)

    total = 0
    fresh = 0
    for raw in modified_dates:
        total += 1
        modified = _as_datetime(raw)
        if modified is not None and now - modified < threshold:
            fresh += 1

    if total == 0:
        return FreshnessInput(score=0.0, stale_count=0, total_items=0)
    return FreshnessInput(
        score=round(100 * fresh / total),
        stale_count=total - fresh,
        total_items=total,
    )
