"""Tests for research/scheduler.py"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

from conftest import NOW, FakeFetcher, FakeScorer, make_query
from research import queries as query_store
from research.errors import SearchError
from research.pipeline import ResearchService
from research.scheduler import run_due_queries


def scheduled(**overrides):
    data = {"schedule_enabled": True, "schedule_frequency": "weekly",
            "next_run_at": NOW - timedelta(minutes=5)}
    data.update(overrides)
    return query_store.create(make_query(**data))


class TestRunDueQueries:
    def test_runs_only_due_queries(self, settings):
        due = scheduled(name="due")
        scheduled(name="later", next_run_at=NOW + timedelta(days=1))
        scheduled(name="disabled", schedule_enabled=False)

        summary = run_due_queries(ResearchService(settings, FakeFetcher(), FakeScorer()), now=NOW)

        assert summary == {"ran": 1, "succeeded": [due.id], "failed": {}}

    def test_due_query_is_rescheduled(self, settings):
        due = scheduled()
        run_due_queries(ResearchService(settings, FakeFetcher(), FakeScorer()), now=NOW)

        stored = query_store.get(due.id)
        assert stored.last_run_at == NOW
        assert stored.next_run_at == NOW + timedelta(days=7)
        assert query_store.due(NOW) == []

    def test_failure_does_not_stop_other_queries(self):
        first = scheduled(name="first", next_run_at=NOW - timedelta(hours=2))
        second = scheduled(name="second", next_run_at=NOW - timedelta(hours=1))
        service = MagicMock()
        service.execute.side_effect = [SearchError("quota exceeded"), []]

        summary = run_due_queries(service, now=NOW)

        assert summary["ran"] == 2
        assert summary["failed"] == {first.id: "quota exceeded"}
        assert summary["succeeded"] == [second.id]

    def test_nothing_due(self):
        summary = run_due_queries(MagicMock(), now=NOW)
        assert summary == {"ran": 0, "succeeded": [], "failed": {}}
