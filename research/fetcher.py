"""Source selection and per-source fetching.

Responsibilities:
- Pick the sources a query may search (active, reliable enough, matching
  categories, include/exclude lists honoured)
- Split the query's result budget across those sources
- Run one site-restricted search per source and drop documents without
  content
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from research.categorizer import hostname
from research.models import Query, RawDocument, Source

if TYPE_CHECKING:
    from research.firecrawl import FirecrawlClient

logger = logging.getLogger(__name__)

#: Content formats requested from the scrape service.
SCRAPE_FORMATS: list[str] = ["markdown"]


def eligible_sources(query: Query, sources: list[Source]) -> list[Source]:
    """Filter *sources* down to the ones *query* should search.

    A source qualifies when it is active, its reliability is at least
    ``query.min_reliability_score``, it shares a category with the query
    (only checked when the query has categories), and it passes the
    include/exclude lists. A non-empty ``include_sources`` takes
    precedence; ``exclude_sources`` is then ignored.

    Order of *sources* is preserved.
    """
    include = set(query.include_sources)
    exclude = set(query.exclude_sources)
    wanted = set(query.categories)

    selected: list[Source] = []
    for source in sources:
        if not source.is_active:
            continue
        if source.reliability_score < query.min_reliability_score:
            continue
        if include:
            if source.id not in include:
                continue
        elif source.id in exclude:
            continue
        if wanted and not wanted.intersection(source.categories):
            continue
        selected.append(source)
    return selected


def per_source_limit(max_results: int, source_count: int) -> int:
    """Documents to request per source so the total roughly matches *max_results*.

    Examples:
        >>> per_source_limit(10, 3)
        4
        >>> per_source_limit(5, 0)
        5
    """
    if source_count <= 0:
        return max(1, max_results)
    return max(1, math.ceil(max_results / source_count))


def site_query(query_text: str, source: Source) -> str:
    """Append a ``site:`` restriction for *source* to *query_text*."""
    site = source.domain or hostname(source.url) or source.url
    return f"{query_text} site:{site}"


class SourceFetcher:
    """Fetches raw documents for one source via the search/scrape service."""

    def __init__(self, client: FirecrawlClient) -> None:
        self.client = client

    def fetch(self, source: Source, query_text: str, limit: int) -> list[RawDocument]:
        """Search *source* for *query_text* and return documents with content.

        Raises:
            SearchError: If the search service call fails.
        """
        documents = self.client.search_web(
            query=site_query(query_text, source),
            limit=limit,
            scrape_results=True,
            formats=SCRAPE_FORMATS,
        )
        usable = [doc for doc in documents if doc.content.strip()]
        if len(usable) < len(documents):
            logger.info(
                "Source %s: skipped %d documents without content",
                source.name, len(documents) - len(usable),
            )
        return usable
