"""Source registry: configured web sources eligible for content discovery."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from research import db
from research.categorizer import classify_source_type, hostname
from research.errors import SourceNotFoundError
from research.models import Source, utcnow

logger = logging.getLogger(__name__)

TABLE = "sources"

#: Fields an admin may change through an update.
EDITABLE_FIELDS: frozenset[str] = frozenset([
    "name", "url", "domain", "source_type", "categories", "is_active",
    "reliability_score", "crawl_frequency", "notes",
])


def build(data: dict[str, Any]) -> Source:
    """Validate admin input into a new Source, deriving domain and type from the URL."""
    data = {k: v for k, v in data.items() if v is not None}
    url = str(data.get("url", ""))
    if url and not data.get("domain"):
        data["domain"] = hostname(url)
    if url and not data.get("source_type"):
        data["source_type"] = classify_source_type(url)
    return Source.model_validate(data)


def create(source: Source) -> Source:
    db.insert(TABLE, source.model_dump())
    logger.info("Created source id=%s name=%r", source.id, source.name)
    return source


def get(source_id: str) -> Optional[Source]:
    row = db.get(TABLE, source_id)
    return Source.model_validate(row) if row else None


def require(source_id: str) -> Source:
    """Return the source or raise ``SourceNotFoundError``."""
    source = get(source_id)
    if source is None:
        raise SourceNotFoundError(source_id)
    return source


def list_sources(
    is_active: Optional[bool] = None,
    source_type: Optional[str] = None,
) -> list[Source]:
    """Return sources ordered by reliability, most reliable first."""
    where: list[db.Condition] = []
    if is_active is not None:
        where.append(("is_active", "=", is_active))
    if source_type:
        where.append(("source_type", "=", source_type))
    rows = db.select(TABLE, where, order_by="reliability_score", descending=True)
    return [Source.model_validate(row) for row in rows]


def update(source_id: str, changes: dict[str, Any]) -> Source:
    """Apply *changes* to a source, re-validating the merged record.

    Raises:
        SourceNotFoundError: If no source has this id.
        ValueError: If a field is not editable.
        pydantic.ValidationError: If the merged record is invalid.
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not editable: {sorted(unknown)}")
    current = require(source_id)
    merged = Source.model_validate({**current.model_dump(), **changes})
    fields = {name: getattr(merged, name) for name in changes}
    db.update(TABLE, source_id, fields)
    return merged


def delete(source_id: str) -> bool:
    return db.delete(TABLE, source_id)


def mark_crawled(source_id: str, when: Optional[datetime] = None) -> None:
    db.update(TABLE, source_id, {"last_crawled_at": when or utcnow()})
