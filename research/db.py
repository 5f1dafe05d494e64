"""
SQLite-backed persistence for the research pipeline.

Schema
──────
table: sources   configured web sources (soft-disabled via is_active)
table: queries   saved search definitions + schedule
table: results   analysed content per query run (is_duplicate = superseded)
table: history   append-only audit log

List and dict columns are stored as JSON text; datetimes as ISO-8601 UTC
with microseconds so that string comparison matches time order.

The helpers below are the table-oriented CRUD surface used by the entity
modules: ``select`` (equality/range filters, order, limit), ``insert``,
``update`` (by id), ``delete`` (by id) and ``count``.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "research.db"

#: Column name → SQL type, per table. ``id`` is always the TEXT primary key.
TABLES: dict[str, dict[str, str]] = {
    "sources": {
        "id": "TEXT PRIMARY KEY",
        "name": "TEXT NOT NULL",
        "url": "TEXT NOT NULL",
        "domain": "TEXT NOT NULL",
        "source_type": "TEXT NOT NULL",
        "categories": "TEXT NOT NULL",
        "is_active": "INTEGER NOT NULL",
        "reliability_score": "REAL NOT NULL",
        "crawl_frequency": "TEXT NOT NULL",
        "notes": "TEXT",
        "last_crawled_at": "TEXT",
        "created_at": "TEXT NOT NULL",
    },
    "queries": {
        "id": "TEXT PRIMARY KEY",
        "name": "TEXT NOT NULL",
        "description": "TEXT",
        "query_text": "TEXT NOT NULL",
        "query_type": "TEXT NOT NULL",
        "categories": "TEXT NOT NULL",
        "include_sources": "TEXT NOT NULL",
        "exclude_sources": "TEXT NOT NULL",
        "max_results": "INTEGER NOT NULL",
        "freshness_days": "INTEGER NOT NULL",
        "min_reliability_score": "REAL NOT NULL",
        "schedule_enabled": "INTEGER NOT NULL",
        "schedule_frequency": "TEXT NOT NULL",
        "last_run_at": "TEXT",
        "next_run_at": "TEXT",
        "created_at": "TEXT NOT NULL",
    },
    "results": {
        "id": "TEXT PRIMARY KEY",
        "query_id": "TEXT",
        "source_id": "TEXT",
        "source_name": "TEXT",
        "title": "TEXT NOT NULL",
        "url": "TEXT NOT NULL",
        "content": "TEXT NOT NULL",
        "summary": "TEXT NOT NULL",
        "key_points": "TEXT NOT NULL",
        "relevance_score": "REAL NOT NULL",
        "topics": "TEXT NOT NULL",
        "published_date": "TEXT",
        "is_duplicate": "INTEGER NOT NULL",
        "created_at": "TEXT NOT NULL",
    },
    "history": {
        "id": "TEXT PRIMARY KEY",
        "action_type": "TEXT NOT NULL",
        "query_id": "TEXT",
        "source_id": "TEXT",
        "success": "INTEGER",
        "duration_ms": "INTEGER",
        "error_message": "TEXT",
        "details": "TEXT NOT NULL",
        "created_at": "TEXT NOT NULL",
    },
}

JSON_COLUMNS: frozenset[str] = frozenset([
    "categories", "include_sources", "exclude_sources",
    "key_points", "topics", "details",
])

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_results_query ON results (query_id, is_duplicate)",
    "CREATE INDEX IF NOT EXISTS idx_history_created ON history (created_at)",
)

_OPERATORS = frozenset(["=", "!=", ">", ">=", "<", "<="])

#: A filter term: ``(column, operator, value)``.
Condition = tuple[str, str, Any]


def _db_path() -> Path:
    """Return the database file path, honouring a DB_PATH env var if set."""
    env = os.getenv("DB_PATH")
    return Path(env) if env else DEFAULT_DB_PATH


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    """Yield a connected sqlite3.Connection, creating the file/dir if needed.

    Everything executed inside one ``with connect()`` block commits (or
    rolls back) together.
    """
    path = _db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def _using(conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
    if conn is not None:
        yield conn
    else:
        with connect() as own:
            yield own


def init_db() -> None:
    """Create all tables and indexes if they don't exist yet."""
    with connect() as conn:
        for table, columns in TABLES.items():
            cols = ",\n    ".join(f"{name} {kind}" for name, kind in columns.items())
            conn.execute(f"CREATE TABLE IF NOT EXISTS {table} (\n    {cols}\n)")
        for statement in _INDEXES:
            conn.execute(statement)
    logger.info("Research DB initialised at %s", _db_path())


# ── Value encoding ─────────────────────────────────────────────────────────────


def encode(column: str, value: Any) -> Any:
    """Convert a Python value into its stored representation."""
    if value is None:
        return None
    if column in JSON_COLUMNS:
        return json.dumps(value, default=str)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    if isinstance(value, bool):
        return int(value)
    return value


def decode(row: sqlite3.Row) -> dict[str, Any]:
    """Turn a sqlite3.Row into a plain dict with JSON columns parsed."""
    data = dict(row)
    for column in JSON_COLUMNS.intersection(data):
        if data[column] is not None:
            data[column] = json.loads(data[column])
    return data


def _check_columns(table: str, columns: Sequence[str]) -> None:
    if table not in TABLES:
        raise ValueError(f"Unknown table: {table}")
    unknown = set(columns) - set(TABLES[table])
    if unknown:
        raise ValueError(f"Unknown column(s) for {table}: {sorted(unknown)}")


def _where(table: str, where: Sequence[Condition]) -> tuple[str, list[Any]]:
    if not where:
        return "", []
    _check_columns(table, [column for column, _, _ in where])
    clauses: list[str] = []
    params: list[Any] = []
    for column, op, value in where:
        if op not in _OPERATORS:
            raise ValueError(f"Unsupported operator: {op}")
        if value is None and op in ("=", "!="):
            clauses.append(f"{column} IS {'NOT ' if op == '!=' else ''}NULL")
            continue
        clauses.append(f"{column} {op} ?")
        params.append(encode(column, value))
    return " WHERE " + " AND ".join(clauses), params


# ── CRUD helpers ───────────────────────────────────────────────────────────────


def insert(
    table: str,
    row: dict[str, Any],
    conn: Optional[sqlite3.Connection] = None,
) -> None:
    """Insert one row. *row* keys must be columns of *table*."""
    _check_columns(table, list(row))
    columns = ", ".join(row)
    placeholders = ", ".join("?" for _ in row)
    values = [encode(column, value) for column, value in row.items()]
    with _using(conn) as c:
        c.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", values)


def update(
    table: str,
    row_id: str,
    fields: dict[str, Any],
    conn: Optional[sqlite3.Connection] = None,
) -> int:
    """Update columns of the row with primary key *row_id*; return rowcount."""
    return update_where(table, fields, [("id", "=", row_id)], conn=conn)


def update_where(
    table: str,
    fields: dict[str, Any],
    where: Sequence[Condition],
    conn: Optional[sqlite3.Connection] = None,
) -> int:
    """Update every row matching *where*; return the number of rows changed."""
    if not fields:
        return 0
    _check_columns(table, list(fields))
    assignments = ", ".join(f"{column} = ?" for column in fields)
    values = [encode(column, value) for column, value in fields.items()]
    clause, params = _where(table, where)
    with _using(conn) as c:
        cursor = c.execute(f"UPDATE {table} SET {assignments}{clause}", values + params)
    return cursor.rowcount


def delete(table: str, row_id: str) -> bool:
    """Delete a row by primary key. Returns True if a row was removed."""
    _check_columns(table, [])
    with connect() as conn:
        cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
    return cursor.rowcount > 0


def get(table: str, row_id: str) -> Optional[dict[str, Any]]:
    """Fetch one row by primary key, or None."""
    rows = select(table, [("id", "=", row_id)], limit=1)
    return rows[0] if rows else None


def select(
    table: str,
    where: Sequence[Condition] = (),
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
) -> list[dict[str, Any]]:
    """Return rows of *table* matching every condition in *where*."""
    clause, params = _where(table, where)
    sql = f"SELECT * FROM {table}{clause}"
    if order_by:
        _check_columns(table, [order_by])
        sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}, rowid {'DESC' if descending else 'ASC'}"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))
    with connect() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [decode(row) for row in rows]


def count(table: str, where: Sequence[Condition] = ()) -> int:
    """Count rows of *table* matching *where*."""
    clause, params = _where(table, where)
    _check_columns(table, [])
    with connect() as conn:
        (total,) = conn.execute(f"SELECT COUNT(*) FROM {table}{clause}", params).fetchone()
    return total
