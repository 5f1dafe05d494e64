"""Saved research queries and their run schedule."""

from __future__ import annotations

import calendar
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from research import db
from research.errors import QueryNotFoundError
from research.models import Frequency, Query, utcnow

logger = logging.getLogger(__name__)

TABLE = "queries"

EDITABLE_FIELDS: frozenset[str] = frozenset([
    "name", "description", "query_text", "query_type", "categories",
    "include_sources", "exclude_sources", "max_results", "freshness_days",
    "min_reliability_score", "schedule_enabled", "schedule_frequency",
])

_SCHEDULE_FIELDS = frozenset(["schedule_enabled", "schedule_frequency"])


# ── Scheduling ─────────────────────────────────────────────────────────────────


def next_run_after(frequency: Frequency | str, now: datetime) -> datetime:
    """Return the next run time for *frequency* counted from *now*.

    Monthly schedules move to the same day of the next calendar month,
    clamped to that month's length (Jan 31 → Feb 28/29).

    Examples:
        >>> next_run_after("daily", datetime(2024, 1, 31))
        datetime.datetime(2024, 2, 1, 0, 0)
        >>> next_run_after("monthly", datetime(2024, 1, 31))
        datetime.datetime(2024, 2, 29, 0, 0)
    """
    frequency = Frequency(frequency)
    if frequency is Frequency.DAILY:
        return now + timedelta(days=1)
    if frequency is Frequency.WEEKLY:
        return now + timedelta(days=7)
    year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def _with_schedule(query: Query, now: datetime) -> Query:
    if not query.schedule_enabled:
        return query.model_copy(update={"next_run_at": None})
    return query.model_copy(
        update={"next_run_at": next_run_after(query.schedule_frequency, now)}
    )


# ── CRUD ───────────────────────────────────────────────────────────────────────


def build(data: dict[str, Any], now: Optional[datetime] = None) -> Query:
    """Validate admin input into a new Query with its first ``next_run_at``."""
    data = {k: v for k, v in data.items() if v is not None}
    return _with_schedule(Query.model_validate(data), now or utcnow())


def create(query: Query) -> Query:
    db.insert(TABLE, query.model_dump())
    logger.info("Created query id=%s name=%r", query.id, query.name)
    return query


def get(query_id: str) -> Optional[Query]:
    row = db.get(TABLE, query_id)
    return Query.model_validate(row) if row else None


def require(query_id: str) -> Query:
    """Return the query or raise ``QueryNotFoundError``."""
    query = get(query_id)
    if query is None:
        raise QueryNotFoundError(query_id)
    return query


def list_queries(query_type: Optional[str] = None) -> list[Query]:
    """Return queries newest first, optionally filtered by type."""
    where: list[db.Condition] = []
    if query_type:
        where.append(("query_type", "=", query_type))
    rows = db.select(TABLE, where, order_by="created_at", descending=True)
    return [Query.model_validate(row) for row in rows]


def update(query_id: str, changes: dict[str, Any], now: Optional[datetime] = None) -> Query:
    """Apply *changes* to a query; schedule changes recompute ``next_run_at``."""
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not editable: {sorted(unknown)}")
    current = require(query_id)
    merged = Query.model_validate({**current.model_dump(), **changes})
    fields = {name: getattr(merged, name) for name in changes}
    if _SCHEDULE_FIELDS & set(changes):
        merged = _with_schedule(merged, now or utcnow())
        fields["next_run_at"] = merged.next_run_at
    db.update(TABLE, query_id, fields)
    return merged


def delete(query_id: str) -> bool:
    return db.delete(TABLE, query_id)


def mark_run(query: Query, when: Optional[datetime] = None) -> Query:
    """Record that *query* ran at *when* and roll its schedule forward."""
    when = when or utcnow()
    ran = _with_schedule(query, when).model_copy(update={"last_run_at": when})
    db.update(TABLE, query.id, {"last_run_at": ran.last_run_at, "next_run_at": ran.next_run_at})
    return ran


def due(now: Optional[datetime] = None) -> list[Query]:
    """Return scheduled queries whose ``next_run_at`` has passed."""
    rows = db.select(
        TABLE,
        [
            ("schedule_enabled", "=", True),
            ("next_run_at", "!=", None),
            ("next_run_at", "<=", now or utcnow()),
        ],
        order_by="next_run_at",
    )
    return [Query.model_validate(row) for row in rows]
