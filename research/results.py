"""Persisted research results.

Each run for a query supersedes the previous batch: older rows stay in the
table with ``is_duplicate = 1`` and only the newest batch is "current".
"""

from __future__ import annotations

import logging
from typing import Optional

from research import db
from research.models import Result

logger = logging.getLogger(__name__)

TABLE = "results"


def replace_current(query_id: str, results: list[Result]) -> list[Result]:
    """Mark the query's current results superseded, then insert *results*.

    Both steps run in one transaction, so a concurrent reader sees either
    the old batch or the new one.

    Returns:
        The stored results, stamped with *query_id*.
    """
    stored = [
        r.model_copy(update={"query_id": query_id, "is_duplicate": False})
        for r in results
    ]
    with db.connect() as conn:
        superseded = db.update_where(
            TABLE,
            {"is_duplicate": True},
            [("query_id", "=", query_id), ("is_duplicate", "=", False)],
            conn=conn,
        )
        for result in stored:
            db.insert(TABLE, result.model_dump(), conn=conn)

    logger.info(
        "Saved %d results for query=%s (%d superseded)",
        len(stored), query_id, superseded,
    )
    return stored


def recent(query_id: str, limit: int = 20) -> list[Result]:
    """Return the query's current results, highest relevance first."""
    rows = db.select(
        TABLE,
        [("query_id", "=", query_id), ("is_duplicate", "=", False)],
        order_by="relevance_score",
        descending=True,
        limit=limit,
    )
    return [Result.model_validate(row) for row in rows]


def get(result_id: str) -> Optional[Result]:
    row = db.get(TABLE, result_id)
    return Result.model_validate(row) if row else None


def count(query_id: str, include_superseded: bool = False) -> int:
    where: list[db.Condition] = [("query_id", "=", query_id)]
    if not include_superseded:
        where.append(("is_duplicate", "=", False))
    return db.count(TABLE, where)
