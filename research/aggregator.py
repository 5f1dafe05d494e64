"""Result aggregation: deduplicate, filter by freshness, rank, truncate.

Every function here is pure, so the final result set depends only on the
candidate list (and *now*), never on how the candidates were gathered.

Tie-breaks:
- Two candidates with the same URL: the strictly higher relevance score
  replaces the incumbent, so on equal scores the first-seen one wins.
- Equal scores after ranking keep their first-seen order (stable sort).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from research.models import Result, utcnow

logger = logging.getLogger(__name__)


# ── Deduplication ──────────────────────────────────────────────────────────────


def url_key(url: str) -> str:
    """Normalise *url* for duplicate detection.

    Strips trailing slashes and lowercases the scheme and host so that
    ``https://example.com/`` and ``HTTPS://Example.com`` are treated as the
    same resource. Path, query and fragment are case-sensitive and kept as is.
    """
    parts = urlsplit(url.strip())
    normalised = urlunsplit((
        parts.scheme.lower(),
        parts.netloc.lower(),
        parts.path,
        parts.query,
        parts.fragment,
    ))
    return normalised.rstrip("/")


def deduplicate(results: list[Result]) -> list[Result]:
    """Keep one result per URL, preferring the higher relevance score.

    Args:
        results: Candidates in arrival order.

    Returns:
        One result per URL, in order of each URL's first appearance.

    Examples:
        >>> [r.relevance_score for r in deduplicate([a_060, a_075])]  # same URL
        [0.75]
    """
    best: dict[str, Result] = {}
    for result in results:
        key = url_key(result.url)
        incumbent = best.get(key)
        if incumbent is None or result.relevance_score > incumbent.relevance_score:
            best[key] = result
    return list(best.values())


# ── Freshness ──────────────────────────────────────────────────────────────────


def filter_fresh(
    results: list[Result],
    freshness_days: int,
    now: Optional[datetime] = None,
) -> list[Result]:
    """Drop results published more than *freshness_days* days before *now*.

    ``freshness_days <= 0`` disables the filter. Results without a
    ``published_date`` are always kept.
    """
    if freshness_days <= 0:
        return list(results)
    cutoff = (now or utcnow()) - timedelta(days=freshness_days)
    return [
        r for r in results
        if r.published_date is None or r.published_date >= cutoff
    ]


# ── Ranking ────────────────────────────────────────────────────────────────────


def rank(results: list[Result]) -> list[Result]:
    """Sort by relevance score, highest first."""
    return sorted(results, key=lambda r: r.relevance_score, reverse=True)


# ── Public pipeline ────────────────────────────────────────────────────────────


def aggregate(
    results: list[Result],
    max_results: int,
    freshness_days: int = 0,
    now: Optional[datetime] = None,
) -> list[Result]:
    """Full aggregation pipeline: deduplicate → freshness → rank → truncate.

    Args:
        results: All candidates from every source for one query.
        max_results: Maximum number of results to return.
        freshness_days: Maximum content age in days (0 = no cutoff).
        now: Reference time for the freshness cutoff (defaults to now, UTC).

    Returns:
        At most *max_results* results with distinct URLs, ordered by
        non-increasing relevance score.
    """
    unique = deduplicate(results)
    fresh = filter_fresh(unique, freshness_days, now)
    ranked = rank(fresh)[:max(0, max_results)]
    logger.info(
        "Aggregated %d candidates → %d unique → %d fresh → %d kept",
        len(results), len(unique), len(fresh), len(ranked),
    )
    return ranked
