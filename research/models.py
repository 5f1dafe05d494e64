"""
Pydantic models shared across the research pipeline.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, Field, field_validator

#: Maximum key points kept per analysed document.
MAX_KEY_POINTS = 5


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


#: Datetimes without tzinfo are taken to be UTC.
UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


def clamp_score(value: float) -> float:
    """Clamp *value* into the closed interval [0, 1]."""
    return min(1.0, max(0.0, float(value)))


# ── Enums ──────────────────────────────────────────────────────────────────────


class SourceType(str, Enum):
    WEBSITE = "website"
    BLOG = "blog"
    JOURNAL = "journal"
    NEWS = "news"
    SOCIAL = "social"
    OTHER = "other"


class QueryType(str, Enum):
    TOPIC = "topic"
    COMPETITIVE = "competitive"
    TRENDING = "trending"
    CUSTOM = "custom"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ActionType(str, Enum):
    QUERY_RUN = "query_run"
    SOURCE_CRAWL = "source_crawl"
    RESULT_SAVED = "result_saved"
    RESULT_USED = "result_used"
    CONFIG_CHANGE = "config_change"


# ── Persisted entities ─────────────────────────────────────────────────────────


class Source(BaseModel):
    """A configured website/domain eligible for content discovery."""

    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    domain: str = ""
    source_type: SourceType = SourceType.WEBSITE
    categories: list[str] = Field(default_factory=list)
    is_active: bool = True
    reliability_score: float = Field(default=0.5, ge=0.0, le=1.0)
    crawl_frequency: Frequency = Frequency.WEEKLY
    notes: Optional[str] = None
    last_crawled_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)


class Query(BaseModel):
    """A saved search definition driving one pipeline run."""

    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    description: Optional[str] = None
    query_text: str = Field(min_length=1)
    query_type: QueryType = QueryType.TOPIC
    categories: list[str] = Field(default_factory=list)
    include_sources: list[str] = Field(default_factory=list)
    exclude_sources: list[str] = Field(default_factory=list)
    max_results: int = Field(default=10, ge=1)
    freshness_days: int = Field(default=30, ge=0)
    min_reliability_score: float = Field(default=0.5, ge=0.0, le=1.0)
    schedule_enabled: bool = False
    schedule_frequency: Frequency = Frequency.WEEKLY
    last_run_at: Optional[UtcDatetime] = None
    next_run_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)


class Result(BaseModel):
    """One piece of discovered content plus its AI-derived summary and score."""

    id: str = Field(default_factory=new_id)
    query_id: Optional[str] = None
    source_id: Optional[str] = None
    source_name: Optional[str] = None
    title: str = "Untitled"
    url: str
    content: str = ""
    summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    relevance_score: float = 0.5
    topics: list[str] = Field(default_factory=list)
    published_date: Optional[UtcDatetime] = None
    is_duplicate: bool = False
    created_at: UtcDatetime = Field(default_factory=utcnow)

    @field_validator("relevance_score")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return clamp_score(value)

    @field_validator("key_points")
    @classmethod
    def _cap_key_points(cls, value: list[str]) -> list[str]:
        return value[:MAX_KEY_POINTS]


class HistoryEntry(BaseModel):
    """One audit-log record of a pipeline action's outcome."""

    id: str = Field(default_factory=new_id)
    action_type: ActionType
    query_id: Optional[str] = None
    source_id: Optional[str] = None
    success: Optional[bool] = None
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDatetime = Field(default_factory=utcnow)


# ── Transient values ───────────────────────────────────────────────────────────


class RawDocument(BaseModel):
    """A document returned by the search/scrape service."""

    title: str = ""
    url: str
    content: str = ""
    description: str = ""
    published_date: Optional[UtcDatetime] = None


class Analysis(BaseModel):
    """Structured fields extracted from a model's free-text analysis."""

    summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    relevance: float = 0.5
    topics: list[str] = Field(default_factory=list)
