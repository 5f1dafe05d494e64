"""Shared fixtures: a throwaway SQLite database per test and model factories."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from config.settings import Settings
from research import db
from research.errors import AnalysisError, SearchError
from research.models import Query, RawDocument, Result, Source

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Point DB_PATH to a fresh temp file for each test."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test_research.db"))
    db.init_db()
    yield


@pytest.fixture
def settings() -> Settings:
    return Settings(
        anthropic_api_key="test-anthropic",
        firecrawl_api_key="test-firecrawl",
        firecrawl_base_url="https://firecrawl.test/v1",
        admin_api_key="admin-secret",
        cron_secret="cron-secret",
    )


def make_source(**overrides) -> Source:
    data = {
        "name": "Example Health",
        "url": "https://www.example-health.org",
        "domain": "example-health.org",
        "categories": ["longevity"],
        "reliability_score": 0.8,
    }
    data.update(overrides)
    return Source(**data)


def make_query(**overrides) -> Query:
    data = {
        "name": "Longevity news",
        "query_text": "longevity medicine",
        "max_results": 5,
        "freshness_days": 0,
        "min_reliability_score": 0.5,
    }
    data.update(overrides)
    return Query(**data)


def make_result(url: str, score: float, **overrides) -> Result:
    data = {"url": url, "title": url.rsplit("/", 1)[-1], "relevance_score": score}
    data.update(overrides)
    return Result(**data)


def make_document(url: str, **overrides) -> RawDocument:
    data = {"url": url, "title": f"Doc {url}", "content": f"Body of {url}"}
    data.update(overrides)
    return RawDocument(**data)


class FakeFetcher:
    """Returns canned documents per source id; raises for ids in ``failing``."""

    def __init__(self, documents=None, failing=()):
        self.documents = documents or {}
        self.failing = set(failing)
        self.calls = []

    def fetch(self, source, query_text, limit):
        self.calls.append((source.id, query_text, limit))
        if source.id in self.failing:
            raise SearchError(f"{source.name} unreachable")
        return list(self.documents.get(source.id, []))[:limit]


class FakeScorer:
    """Scores documents from a URL → relevance map; raises for ``broken`` URLs."""

    def __init__(self, scores=None, broken=()):
        self.scores = scores or {}
        self.broken = set(broken)

    def score(self, document, query_text, source=None):
        if document.url in self.broken:
            raise AnalysisError("model overloaded")
        return Result(
            url=document.url,
            title=document.title,
            content=document.content,
            relevance_score=self.scores.get(document.url, 0.5),
            published_date=document.published_date,
            source_id=source.id if source else None,
            source_name=source.name if source else None,
        )
