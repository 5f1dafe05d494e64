"""
Research pipeline orchestration.

Flow
────
1. execute(query_id)
     → load the query, open a ``query_run`` history entry
     → pick eligible sources and split the result budget across them
     → for each source, in order: search (Firecrawl) then score every
       document (Claude); a failing source is logged as a failed
       ``source_crawl`` and skipped
     → aggregate (dedup → freshness → rank → truncate)
     → supersede the query's previous results and store the new batch
     → stamp the query's last/next run time and close the history entry

2. crawl_source(source_id)
     → operator retry of one source's search + score cycle; the results
       are returned for inspection, not stored

Runs of the same query are serialised in-process; different queries may
run concurrently.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from config.settings import Settings
from research import aggregator
from research import history as hist
from research import queries as query_store
from research import results as result_store
from research import sources as source_store
from research.errors import AnalysisError, SearchError
from research.fetcher import SourceFetcher, eligible_sources, per_source_limit
from research.firecrawl import FirecrawlClient
from research.models import Result, Source, utcnow
from research.scorer import ContentScorer

logger = logging.getLogger(__name__)

#: Per-query lock and the number of runs holding or waiting on it. An entry
#: is dropped once its last user leaves.
_query_locks: dict[str, tuple[threading.Lock, int]] = {}
_query_locks_guard = threading.Lock()


@contextmanager
def _single_writer(query_id: str) -> Iterator[None]:
    """Hold the per-query lock for the duration of one run."""
    with _query_locks_guard:
        lock, users = _query_locks.get(query_id, (threading.Lock(), 0))
        _query_locks[query_id] = (lock, users + 1)
    try:
        with lock:
            yield
    finally:
        with _query_locks_guard:
            lock, users = _query_locks[query_id]
            if users > 1:
                _query_locks[query_id] = (lock, users - 1)
            else:
                del _query_locks[query_id]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ResearchService:
    """Runs saved queries and single-source crawls.

    Collaborators default to the real Firecrawl and Claude clients built
    from *settings*; tests pass fakes.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        fetcher: Optional[SourceFetcher] = None,
        scorer: Optional[ContentScorer] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.fetcher = fetcher or SourceFetcher(FirecrawlClient(self.settings))
        self.scorer = scorer or ContentScorer(self.settings)

    # ── Query runs ─────────────────────────────────────────────────────────

    def execute(self, query_id: str, now: Optional[datetime] = None) -> list[Result]:
        """Run a saved query end to end and return the stored results.

        Args:
            query_id: Id of the query to run.
            now: Reference time for freshness and scheduling (default: now).

        Raises:
            ConfigurationError: If API credentials are missing (nothing runs).
            QueryNotFoundError: If the query does not exist.
            Exception: Any error outside a single source's crawl (e.g. a
                database failure) is recorded on the run entry and re-raised.
        """
        self.settings.validate()
        with _single_writer(query_id):
            return self._execute(query_id, now)

    def _execute(self, query_id: str, now: Optional[datetime]) -> list[Result]:
        started = time.monotonic()
        query = query_store.require(query_id)
        entry_id = hist.open_run(query)

        try:
            selected = eligible_sources(query, source_store.list_sources(is_active=True))
            limit = per_source_limit(query.max_results, len(selected))
            logger.info(
                "Running query=%s (%r) over %d sources, %d docs each",
                query.id, query.name, len(selected), limit,
            )

            candidates: list[Result] = []
            failed = 0
            for source in selected:
                try:
                    candidates.extend(
                        self._crawl(source, query.query_text, limit, query_id=query.id)
                    )
                except SearchError as exc:
                    failed += 1
                    logger.warning("Skipping source %s: %s", source.name, exc)

            final = aggregator.aggregate(
                candidates,
                max_results=query.max_results,
                freshness_days=query.freshness_days,
                now=now,
            )
            stored = result_store.replace_current(query.id, final)
            query_store.mark_run(query, now or utcnow())

            hist.finish_run(
                entry_id,
                success=True,
                duration_ms=_elapsed_ms(started),
                details={
                    "results_count": len(stored),
                    "sources_searched": len(selected),
                    "sources_failed": failed,
                },
            )
            return stored
        except Exception as exc:
            logger.exception("Research run failed for query=%s", query_id)
            hist.finish_run(
                entry_id,
                success=False,
                duration_ms=_elapsed_ms(started),
                error_message=str(exc) or exc.__class__.__name__,
            )
            raise

    # ── Single-source crawl ────────────────────────────────────────────────

    def crawl_source(self, source_id: str, query_id: Optional[str] = None) -> list[Result]:
        """Re-run the search + score cycle for one source.

        With *query_id* the query's text and result budget are used;
        otherwise the source's categories (or its name) form the search
        text and ``settings.crawl_limit`` caps the documents.

        Raises:
            SourceNotFoundError / QueryNotFoundError: Unknown ids.
            SearchError: If the search fails (also recorded in history).
        """
        self.settings.validate()
        source = source_store.require(source_id)
        if query_id:
            query = query_store.require(query_id)
            text, limit = query.query_text, query.max_results
        else:
            text = " ".join(source.categories) or source.name
            limit = self.settings.crawl_limit

        found = self._crawl(source, text, limit, query_id=query_id)
        return aggregator.rank(aggregator.deduplicate(found))

    def _crawl(
        self,
        source: Source,
        query_text: str,
        limit: int,
        query_id: Optional[str] = None,
    ) -> list[Result]:
        """Fetch and score one source, recording a ``source_crawl`` entry."""
        started = time.monotonic()
        try:
            documents = self.fetcher.fetch(source, query_text, limit)
        except SearchError as exc:
            hist.record_source_crawl(
                source.id,
                success=False,
                error_message=str(exc),
                duration_ms=_elapsed_ms(started),
                query_id=query_id,
            )
            raise

        scored: list[Result] = []
        analysis_failures = 0
        for document in documents:
            try:
                scored.append(self.scorer.score(document, query_text, source))
            except AnalysisError as exc:
                analysis_failures += 1
                logger.warning("Analysis failed for %s: %s", document.url, exc)

        hist.record_source_crawl(
            source.id,
            success=True,
            results_found=len(scored),
            duration_ms=_elapsed_ms(started),
            query_id=query_id,
            analysis_failures=analysis_failures,
        )
        source_store.mark_crawled(source.id)
        logger.info(
            "Crawled %s: %d documents, %d scored", source.name, len(documents), len(scored),
        )
        return scored
