"""Tests for web/app.py and web/auth.py via the Flask test client."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import FakeFetcher, FakeScorer, make_document, make_query, make_result, make_source
from research import history as hist
from research import queries as query_store
from research import results as result_store
from research import sources as source_store
from research.models import utcnow
from research.pipeline import ResearchService
from web.app import create_app
from web.auth import token_matches

ADMIN = {"x-admin-token": "admin-secret"}


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def client(settings, fetcher):
    service = ResearchService(settings, fetcher, FakeScorer())
    app = create_app(settings, service=service)
    app.config["TESTING"] = True
    return app.test_client()


# ── Auth ───────────────────────────────────────────────────────────────────────


class TestTokenMatches:
    def test_equal(self):
        assert token_matches("abc", "abc") is True

    def test_different(self):
        assert token_matches("abd", "abc") is False

    def test_empty_never_matches(self):
        assert token_matches("", "") is False
        assert token_matches(None, "abc") is False


class TestAdminAuth:
    URL = "/api/admin/research/sources"

    def test_missing_token_rejected(self, client):
        assert client.get(self.URL).status_code == 401

    def test_wrong_token_rejected(self, client):
        assert client.get(self.URL, headers={"x-admin-token": "nope"}).status_code == 401

    @pytest.mark.parametrize("headers", [
        {"x-admin-token": "admin-secret"},
        {"x-api-key": "admin-secret"},
        {"Authorization": "Bearer admin-secret"},
    ])
    def test_header_tokens_accepted(self, client, headers):
        assert client.get(self.URL, headers=headers).status_code == 200

    def test_cookie_accepted(self, client):
        client.set_cookie("admin-token", "admin-secret")
        assert client.get(self.URL).status_code == 200

    def test_query_param_accepted(self, client):
        assert client.get(f"{self.URL}?token=admin-secret").status_code == 200

    def test_unset_secret_is_503(self, settings, client):
        settings.admin_api_key = ""
        response = client.get(self.URL, headers={"x-admin-token": ""})
        assert response.status_code == 503

    def test_health_is_public(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json() == {"status": "ok", "missing_config": []}


# ── Sources ────────────────────────────────────────────────────────────────────


class TestSourceRoutes:
    def test_create_and_list(self, client):
        response = client.post(
            "/api/admin/research/sources",
            json={"name": "PubMed", "url": "https://pubmed.ncbi.nlm.nih.gov", "categories": ["sleep"]},
            headers=ADMIN,
        )
        assert response.status_code == 201
        created = response.get_json()["source"]
        assert created["source_type"] == "journal"
        assert created["domain"] == "pubmed.ncbi.nlm.nih.gov"

        listed = client.get("/api/admin/research/sources", headers=ADMIN).get_json()["sources"]
        assert [s["id"] for s in listed] == [created["id"]]
        assert hist.list_history(action_type="config_change")[0].details["action"] == "source_created"

    def test_create_requires_name_and_url(self, client):
        response = client.post("/api/admin/research/sources", json={"name": "x"}, headers=ADMIN)
        assert response.status_code == 400

    def test_create_rejects_invalid_reliability(self, client):
        response = client.post(
            "/api/admin/research/sources",
            json={"name": "x", "url": "https://a.org", "reliability_score": 2},
            headers=ADMIN,
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "Invalid input"

    def test_filter_active(self, client):
        source_store.create(make_source(name="on"))
        source_store.create(make_source(name="off", is_active=False))

        response = client.get("/api/admin/research/sources?is_active=false", headers=ADMIN)

        assert [s["name"] for s in response.get_json()["sources"]] == ["off"]

    def test_patch(self, client):
        source = source_store.create(make_source())
        response = client.patch(
            f"/api/admin/research/sources/{source.id}", json={"is_active": False}, headers=ADMIN,
        )
        assert response.status_code == 200
        assert response.get_json()["source"]["is_active"] is False

    def test_patch_unknown_field(self, client):
        source = source_store.create(make_source())
        response = client.patch(
            f"/api/admin/research/sources/{source.id}", json={"id": "other"}, headers=ADMIN,
        )
        assert response.status_code == 400

    def test_patch_missing_source(self, client):
        response = client.patch("/api/admin/research/sources/nope", json={"name": "x"}, headers=ADMIN)
        assert response.status_code == 404

    def test_delete(self, client):
        source = source_store.create(make_source())
        response = client.delete(f"/api/admin/research/sources/{source.id}", headers=ADMIN)
        assert response.get_json() == {"success": True}
        assert source_store.get(source.id) is None

    def test_crawl(self, client, fetcher):
        source = source_store.create(make_source())
        fetcher.documents[source.id] = [make_document("https://a.org/1")]

        response = client.post(f"/api/admin/research/sources/{source.id}/crawl", headers=ADMIN)

        body = response.get_json()
        assert response.status_code == 200
        assert body["count"] == 1
        assert body["results"][0]["url"] == "https://a.org/1"

    def test_crawl_search_failure_is_502(self, client, fetcher):
        source = source_store.create(make_source())
        fetcher.failing.add(source.id)
        response = client.post(f"/api/admin/research/sources/{source.id}/crawl", headers=ADMIN)
        assert response.status_code == 502


# ── Queries ────────────────────────────────────────────────────────────────────


class TestQueryRoutes:
    def test_create_scheduled_query(self, client):
        response = client.post(
            "/api/admin/research/queries",
            json={"name": "Sleep", "query_text": "sleep apnea", "schedule_enabled": True,
                  "schedule_frequency": "daily"},
            headers=ADMIN,
        )
        assert response.status_code == 201
        query = response.get_json()["query"]
        assert query["max_results"] == 10
        assert query["next_run_at"] is not None

    def test_create_requires_query_text(self, client):
        response = client.post("/api/admin/research/queries", json={"name": "x"}, headers=ADMIN)
        assert response.status_code == 400

    def test_non_object_body(self, client):
        response = client.post("/api/admin/research/queries", json=["x"], headers=ADMIN)
        assert response.status_code == 400

    def test_list_and_delete(self, client):
        query = query_store.create(make_query())
        listed = client.get("/api/admin/research/queries", headers=ADMIN).get_json()["queries"]
        assert [q["id"] for q in listed] == [query.id]

        client.delete(f"/api/admin/research/queries/{query.id}", headers=ADMIN)
        assert query_store.get(query.id) is None

    def test_results(self, client):
        query = query_store.create(make_query())
        result_store.replace_current(query.id, [make_result("https://a.org/1", 0.3),
                                                make_result("https://a.org/2", 0.8)])

        response = client.get(f"/api/admin/research/queries/{query.id}/results?limit=1", headers=ADMIN)

        body = response.get_json()
        assert body["count"] == 1
        assert body["results"][0]["url"] == "https://a.org/2"

    def test_results_bad_limit(self, client):
        query = query_store.create(make_query())
        response = client.get(f"/api/admin/research/queries/{query.id}/results?limit=ten", headers=ADMIN)
        assert response.status_code == 400


# ── Running ────────────────────────────────────────────────────────────────────


class TestRunQuery:
    URL = "/api/admin/research/query"

    def test_runs_and_returns_results(self, client, fetcher):
        source = source_store.create(make_source())
        query = query_store.create(make_query())
        fetcher.documents[source.id] = [make_document("https://a.org/1")]

        response = client.post(self.URL, json={"queryId": query.id}, headers=ADMIN)

        body = response.get_json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["count"] == 1

    def test_missing_query_id(self, client):
        response = client.post(self.URL, json={}, headers=ADMIN)
        assert response.status_code == 400
        assert response.get_json()["error"] == "Query ID is required"

    def test_unknown_query(self, client):
        response = client.post(self.URL, json={"queryId": "nope"}, headers=ADMIN)
        assert response.status_code == 404

    def test_missing_credentials(self, client, settings):
        settings.anthropic_api_key = ""
        query = query_store.create(make_query())
        response = client.post(self.URL, json={"queryId": query.id}, headers=ADMIN)
        assert response.status_code == 503

    def test_unexpected_failure_is_500(self, client, monkeypatch):
        query = query_store.create(make_query())

        def boom(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(result_store, "replace_current", boom)
        response = client.post(self.URL, json={"queryId": query.id}, headers=ADMIN)

        assert response.status_code == 500
        assert response.get_json() == {"error": "disk full"}


# ── Results and history ────────────────────────────────────────────────────────


class TestResultActions:
    def test_mark_saved(self, client):
        (stored,) = result_store.replace_current("q1", [make_result("https://a.org/1", 0.5)])

        response = client.post(f"/api/admin/research/results/{stored.id}/saved", headers=ADMIN)

        assert response.status_code == 200
        assert response.get_json()["entry"]["action_type"] == "result_saved"

    def test_unknown_action(self, client):
        (stored,) = result_store.replace_current("q1", [make_result("https://a.org/1", 0.5)])
        response = client.post(f"/api/admin/research/results/{stored.id}/shared", headers=ADMIN)
        assert response.status_code == 404

    def test_unknown_result(self, client):
        response = client.post("/api/admin/research/results/nope/used", headers=ADMIN)
        assert response.status_code == 404


class TestHistoryRoute:
    def test_lists_entries(self, client):
        hist.record_config_change("source_created")
        hist.record_source_crawl("s1", success=True)

        response = client.get("/api/admin/research/history?action_type=source_crawl", headers=ADMIN)

        entries = response.get_json()["history"]
        assert [e["action_type"] for e in entries] == ["source_crawl"]

    def test_invalid_action_type(self, client):
        response = client.get("/api/admin/research/history?action_type=bogus", headers=ADMIN)
        assert response.status_code == 400


# ── Cron ───────────────────────────────────────────────────────────────────────


class TestCron:
    URL = "/api/cron/research"

    def test_requires_bearer_secret(self, client):
        assert client.get(self.URL).status_code == 401
        assert client.get(self.URL, headers={"x-admin-token": "cron-secret"}).status_code == 401

    def test_admin_token_not_accepted(self, client):
        response = client.get(self.URL, headers={"Authorization": "Bearer admin-secret"})
        assert response.status_code == 401

    def test_unset_secret_is_503(self, client, settings):
        settings.cron_secret = ""
        assert client.get(self.URL, headers={"Authorization": "Bearer "}).status_code == 503

    def test_runs_due_queries(self, client):
        due = query_store.create(make_query(schedule_enabled=True,
                                            next_run_at=utcnow() - timedelta(days=1)))

        response = client.get(self.URL, headers={"Authorization": "Bearer cron-secret"})

        body = response.get_json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["succeeded"] == [due.id]
        assert query_store.get(due.id).last_run_at is not None
