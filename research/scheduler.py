"""Runs scheduled queries whose ``next_run_at`` has passed.

Invoked by the cron endpoint; this is the only autonomous entry point into
the pipeline. Each due query runs once; a failing query is logged (its own
history entry records the error) and the remaining queries still run.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from research import queries as query_store
from research.models import utcnow

if TYPE_CHECKING:
    from research.pipeline import ResearchService

logger = logging.getLogger(__name__)


def run_due_queries(service: ResearchService, now: Optional[datetime] = None) -> dict[str, Any]:
    """Execute every due query and summarise the outcome.

    Args:
        service: The pipeline used to run each query.
        now: Reference time (defaults to now, UTC).

    Returns:
        ``{"ran": n, "succeeded": [ids], "failed": {id: message}}``.
    """
    now = now or utcnow()
    due = query_store.due(now)
    logger.info("Cron: %d queries due at %s", len(due), now.isoformat())

    succeeded: list[str] = []
    failed: dict[str, str] = {}
    for query in due:
        try:
            service.execute(query.id, now=now)
            succeeded.append(query.id)
        except Exception as exc:
            logger.exception("Scheduled run failed for query=%s", query.id)
            failed[query.id] = str(exc) or exc.__class__.__name__

    return {"ran": len(due), "succeeded": succeeded, "failed": failed}
