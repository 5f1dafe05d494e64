"""
Tests for research/history.py

Uses the temporary SQLite file from conftest so the real DB is never touched.
"""

from datetime import timedelta

import pytest

from conftest import make_query, make_result
from research import db
from research import history as hist
from research.models import ActionType, HistoryEntry, utcnow


class TestQueryRun:
    def test_open_run_records_query_text(self):
        query = make_query(query_text="prp therapy")
        entry = hist.get(hist.open_run(query))

        assert entry.action_type == ActionType.QUERY_RUN
        assert entry.query_id == query.id
        assert entry.details == {"query_text": "prp therapy"}
        assert entry.success is None

    def test_finish_run_attaches_outcome_and_merges_details(self):
        entry_id = hist.open_run(make_query(query_text="q"))

        hist.finish_run(entry_id, success=True, duration_ms=42,
                        details={"results_count": 3, "sources_searched": 2})

        entry = hist.get(entry_id)
        assert entry.success is True
        assert entry.duration_ms == 42
        assert entry.details == {"query_text": "q", "results_count": 3, "sources_searched": 2}

    def test_finish_run_failure(self):
        entry_id = hist.open_run(make_query())
        hist.finish_run(entry_id, success=False, duration_ms=5, error_message="db down")

        entry = hist.get(entry_id)
        assert entry.success is False
        assert entry.error_message == "db down"


class TestAppendOnlyEntries:
    def test_source_crawl_entry(self):
        entry = hist.record_source_crawl("src-1", success=False, error_message="timeout")
        stored = hist.get(entry.id)

        assert stored.action_type == ActionType.SOURCE_CRAWL
        assert stored.success is False
        assert stored.details == {"results_found": 0}

    def test_source_crawl_extra_details(self):
        entry = hist.record_source_crawl("src-1", success=True, results_found=4,
                                         analysis_failures=1)
        assert hist.get(entry.id).details == {"results_found": 4, "analysis_failures": 1}

    def test_config_change(self):
        entry = hist.record_config_change("source_created", source_id="s", source_name="NIH")
        assert hist.get(entry.id).details == {"action": "source_created", "source_name": "NIH"}

    def test_result_action(self):
        result = make_result("https://a.org/x", 0.7, query_id="q1")
        entry = hist.record_result_action(result, ActionType.RESULT_USED)

        assert entry.action_type == ActionType.RESULT_USED
        assert entry.details["result_id"] == result.id

    def test_result_action_rejects_other_types(self):
        with pytest.raises(ValueError):
            hist.record_result_action(make_result("https://a.org", 0.5), ActionType.QUERY_RUN)


class TestListHistory:
    def test_newest_first(self):
        first = hist.record_config_change("a")
        second = hist.record_config_change("b")
        assert [e.id for e in hist.list_history()][:2] == [second.id, first.id]

    def test_filter_by_action_type(self):
        hist.record_config_change("a")
        hist.record_source_crawl("s", success=True)

        entries = hist.list_history(action_type="source_crawl")

        assert [e.action_type for e in entries] == [ActionType.SOURCE_CRAWL]

    def test_unknown_action_type_rejected(self):
        with pytest.raises(ValueError):
            hist.list_history(action_type="bogus")

    def test_filter_by_days(self):
        old = HistoryEntry(action_type=ActionType.CONFIG_CHANGE,
                           created_at=utcnow() - timedelta(days=10))
        db.insert("history", old.model_dump())
        recent = hist.record_config_change("recent")

        ids = [e.id for e in hist.list_history(days=7)]

        assert recent.id in ids
        assert old.id not in ids

    def test_limit(self):
        for i in range(5):
            hist.record_config_change(f"change {i}")
        assert len(hist.list_history(limit=3)) == 3
