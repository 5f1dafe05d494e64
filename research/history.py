"""
Append-only audit log of research actions.

One ``query_run`` entry is opened when a query starts and completed with
its outcome when it ends; every source crawl attempt writes its own
``source_crawl`` entry. Admin edits are logged as ``config_change`` and
result bookmarks as ``result_saved`` / ``result_used``. Entries are never
deleted.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from research import db
from research.models import ActionType, HistoryEntry, Query, Result, utcnow

logger = logging.getLogger(__name__)

TABLE = "history"


def _append(entry: HistoryEntry) -> HistoryEntry:
    db.insert(TABLE, entry.model_dump())
    return entry


def open_run(query: Query) -> str:
    """Start a ``query_run`` entry and return its id."""
    entry = _append(
        HistoryEntry(
            action_type=ActionType.QUERY_RUN,
            query_id=query.id,
            details={"query_text": query.query_text},
        )
    )
    logger.info("Opened run entry id=%s for query=%s", entry.id, query.id)
    return entry.id


def finish_run(
    entry_id: str,
    success: bool,
    duration_ms: int,
    details: Optional[dict[str, Any]] = None,
    error_message: Optional[str] = None,
) -> None:
    """Attach the outcome of a run to its ``query_run`` entry.

    Args:
        entry_id: Id returned by :func:`open_run`.
        success: Whether the run completed.
        duration_ms: Wall-clock time of the run.
        details: Merged into the entry's existing details (e.g.
            ``results_count``, ``sources_searched``).
        error_message: Failure reason, when ``success`` is False.
    """
    fields: dict[str, Any] = {
        "success": success,
        "duration_ms": duration_ms,
        "error_message": error_message,
    }
    if details:
        current = db.get(TABLE, entry_id)
        fields["details"] = {**(current["details"] if current else {}), **details}
    db.update(TABLE, entry_id, fields)


def record_source_crawl(
    source_id: str,
    success: bool,
    results_found: int = 0,
    error_message: Optional[str] = None,
    duration_ms: Optional[int] = None,
    query_id: Optional[str] = None,
    **extra: Any,
) -> HistoryEntry:
    """Append one ``source_crawl`` entry for a single crawl attempt."""
    return _append(
        HistoryEntry(
            action_type=ActionType.SOURCE_CRAWL,
            source_id=source_id,
            query_id=query_id,
            success=success,
            duration_ms=duration_ms,
            error_message=error_message,
            details={"results_found": results_found, **extra},
        )
    )


def record_config_change(
    action: str,
    query_id: Optional[str] = None,
    source_id: Optional[str] = None,
    **details: Any,
) -> HistoryEntry:
    """Log an admin configuration change such as ``source_created``."""
    return _append(
        HistoryEntry(
            action_type=ActionType.CONFIG_CHANGE,
            query_id=query_id,
            source_id=source_id,
            success=True,
            details={"action": action, **details},
        )
    )


def record_result_action(result: Result, action_type: ActionType) -> HistoryEntry:
    """Log that an admin saved or used a result."""
    if action_type not in (ActionType.RESULT_SAVED, ActionType.RESULT_USED):
        raise ValueError(f"Not a result action: {action_type}")
    return _append(
        HistoryEntry(
            action_type=action_type,
            query_id=result.query_id,
            source_id=result.source_id,
            success=True,
            details={"result_id": result.id, "title": result.title, "url": result.url},
        )
    )


def get(entry_id: str) -> Optional[HistoryEntry]:
    row = db.get(TABLE, entry_id)
    return HistoryEntry.model_validate(row) if row else None


def list_history(
    action_type: Optional[str] = None,
    days: Optional[int] = None,
    limit: Optional[int] = None,
) -> list[HistoryEntry]:
    """Return history entries, newest first.

    Args:
        action_type: Only entries of this action type.
        days: Only entries created within the last *days* days.
        limit: Maximum number of entries to return.
    """
    where: list[db.Condition] = []
    if action_type:
        where.append(("action_type", "=", ActionType(action_type)))
    if days:
        where.append(("created_at", ">=", utcnow() - timedelta(days=days)))

    rows = db.select(TABLE, where, order_by="created_at", descending=True, limit=limit)

    entries: list[HistoryEntry] = []
    for row in rows:
        try:
            entries.append(HistoryEntry.model_validate(row))
        except Exception as exc:
            logger.warning("Skipping corrupt history entry id=%s: %s", row["id"], exc)
    return entries
