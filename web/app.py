"""
Flask admin API for the research pipeline.

Routes (all JSON; admin routes need the admin token, see web/auth.py)
──────
GET    /api/health
GET    /api/admin/research/sources              ?is_active=&source_type=
POST   /api/admin/research/sources
PATCH  /api/admin/research/sources/<id>
DELETE /api/admin/research/sources/<id>
POST   /api/admin/research/sources/<id>/crawl   {queryId?}
GET    /api/admin/research/queries              ?query_type=
POST   /api/admin/research/queries
PATCH  /api/admin/research/queries/<id>
DELETE /api/admin/research/queries/<id>
GET    /api/admin/research/queries/<id>/results ?limit=
POST   /api/admin/research/query                {queryId}  run now
POST   /api/admin/research/results/<id>/saved
POST   /api/admin/research/results/<id>/used
GET    /api/admin/research/history              ?action_type=&days=&limit=
GET    /api/cron/research                       Authorization: Bearer <CRON_SECRET>
"""

from __future__ import annotations

import logging
import os
import sqlite3
import sys
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, current_app, jsonify, request
from pydantic import ValidationError

# Allow running as `python web/app.py` from the project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

load_dotenv()

from config.settings import Settings
from research import db
from research import history as hist
from research import queries as query_store
from research import results as result_store
from research import sources as source_store
from research.errors import ConfigurationError, NotFoundError, SearchError
from research.models import ActionType
from research.pipeline import ResearchService
from research.scheduler import run_due_queries
from web.auth import require_admin, require_cron

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _service() -> ResearchService:
    return current_app.config["SERVICE"]


def _body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _int_arg(name: str) -> Optional[int]:
    value = request.args.get(name)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer") from None


def _bool_arg(name: str) -> Optional[bool]:
    value = request.args.get(name)
    if value in (None, ""):
        return None
    return value.lower() == "true"


def _dump(models) -> list[dict]:
    return [m.model_dump(mode="json") for m in models]


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[ResearchService] = None,
) -> Flask:
    """Build the Flask app, initialising the database on startup."""
    settings = settings or Settings()
    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.config["SERVICE"] = service or ResearchService(settings)

    db.init_db()

    # ── Errors ─────────────────────────────────────────────────────────────

    @app.errorhandler(NotFoundError)
    def not_found(exc):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(ValidationError)
    def invalid(exc):
        details = exc.errors(include_url=False, include_context=False)
        return jsonify({"error": "Invalid input", "details": details}), 400

    @app.errorhandler(ValueError)
    def bad_request(exc):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(ConfigurationError)
    def not_configured(exc):
        logger.error("Configuration error: %s", exc)
        return jsonify({"error": str(exc)}), 503

    @app.errorhandler(SearchError)
    def upstream_failed(exc):
        return jsonify({"error": str(exc)}), 502

    @app.errorhandler(sqlite3.Error)
    def storage_failed(exc):
        logger.exception("Database error on %s", request.path)
        return jsonify({"error": str(exc)}), 500

    # ── Health ─────────────────────────────────────────────────────────────

    @app.route("/api/health")
    def health():
        return jsonify({"status": "ok", "missing_config": settings.missing_keys()})

    # ── Sources ────────────────────────────────────────────────────────────

    @app.route("/api/admin/research/sources")
    @require_admin
    def list_sources():
        found = source_store.list_sources(
            is_active=_bool_arg("is_active"),
            source_type=request.args.get("source_type") or None,
        )
        return jsonify({"sources": _dump(found)})

    @app.route("/api/admin/research/sources", methods=["POST"])
    @require_admin
    def create_source():
        body = _body()
        if not body.get("name") or not body.get("url"):
            return jsonify({"error": "Name and URL are required"}), 400
        source = source_store.create(source_store.build(body))
        hist.record_config_change("source_created", source_id=source.id, source_name=source.name)
        return jsonify({"source": source.model_dump(mode="json")}), 201

    @app.route("/api/admin/research/sources/<source_id>", methods=["PATCH"])
    @require_admin
    def update_source(source_id: str):
        changes = _body()
        source = source_store.update(source_id, changes)
        hist.record_config_change("source_updated", source_id=source_id, changes=sorted(changes))
        return jsonify({"source": source.model_dump(mode="json")})

    @app.route("/api/admin/research/sources/<source_id>", methods=["DELETE"])
    @require_admin
    def delete_source(source_id: str):
        source = source_store.require(source_id)
        source_store.delete(source_id)
        hist.record_config_change(
            "source_deleted", source_name=source.name, deleted_source_id=source_id,
        )
        return jsonify({"success": True})

    @app.route("/api/admin/research/sources/<source_id>/crawl", methods=["POST"])
    @require_admin
    def crawl_source(source_id: str):
        body = request.get_json(silent=True) or {}
        found = _service().crawl_source(source_id, query_id=body.get("queryId") or None)
        return jsonify({"success": True, "results": _dump(found), "count": len(found)})

    # ── Queries ────────────────────────────────────────────────────────────

    @app.route("/api/admin/research/queries")
    @require_admin
    def list_queries():
        found = query_store.list_queries(query_type=request.args.get("query_type") or None)
        return jsonify({"queries": _dump(found)})

    @app.route("/api/admin/research/queries", methods=["POST"])
    @require_admin
    def create_query():
        body = _body()
        if not body.get("name") or not body.get("query_text"):
            return jsonify({"error": "Name and query text are required"}), 400
        query = query_store.create(query_store.build(body))
        hist.record_config_change("query_created", query_id=query.id, query_name=query.name)
        return jsonify({"query": query.model_dump(mode="json")}), 201

    @app.route("/api/admin/research/queries/<query_id>", methods=["PATCH"])
    @require_admin
    def update_query(query_id: str):
        changes = _body()
        query = query_store.update(query_id, changes)
        hist.record_config_change("query_updated", query_id=query_id, changes=sorted(changes))
        return jsonify({"query": query.model_dump(mode="json")})

    @app.route("/api/admin/research/queries/<query_id>", methods=["DELETE"])
    @require_admin
    def delete_query(query_id: str):
        query = query_store.require(query_id)
        query_store.delete(query_id)
        hist.record_config_change(
            "query_deleted", query_name=query.name, deleted_query_id=query_id,
        )
        return jsonify({"success": True})

    @app.route("/api/admin/research/queries/<query_id>/results")
    @require_admin
    def query_results(query_id: str):
        query_store.require(query_id)
        found = result_store.recent(query_id, limit=_int_arg("limit") or 20)
        return jsonify({"results": _dump(found), "count": len(found)})

    @app.route("/api/admin/research/query", methods=["POST"])
    @require_admin
    def run_query():
        query_id = _body().get("queryId")
        if not query_id:
            return jsonify({"error": "Query ID is required"}), 400
        try:
            found = _service().execute(query_id)
        except (NotFoundError, ConfigurationError):
            raise
        except Exception as exc:
            logger.exception("Error executing research query %s", query_id)
            return jsonify({"error": str(exc) or "Failed to execute research query"}), 500
        return jsonify({"success": True, "results": _dump(found), "count": len(found)})

    # ── Results ────────────────────────────────────────────────────────────

    @app.route("/api/admin/research/results/<result_id>/<action>", methods=["POST"])
    @require_admin
    def result_action(result_id: str, action: str):
        action_type = {"saved": ActionType.RESULT_SAVED, "used": ActionType.RESULT_USED}.get(action)
        if action_type is None:
            return jsonify({"error": "Not found"}), 404
        result = result_store.get(result_id)
        if result is None:
            return jsonify({"error": f"Result not found: {result_id}"}), 404
        entry = hist.record_result_action(result, action_type)
        return jsonify({"entry": entry.model_dump(mode="json")})

    # ── History ────────────────────────────────────────────────────────────

    @app.route("/api/admin/research/history")
    @require_admin
    def list_history():
        entries = hist.list_history(
            action_type=request.args.get("action_type") or None,
            days=_int_arg("days"),
            limit=_int_arg("limit"),
        )
        return jsonify({"history": _dump(entries)})

    # ── Cron ───────────────────────────────────────────────────────────────

    @app.route("/api/cron/research", methods=["GET", "POST"])
    @require_cron
    def cron_research():
        logger.info("Research cron job started")
        settings.validate()
        summary = run_due_queries(_service())
        return jsonify({"success": True, **summary})

    return app


# ── Entry point ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    settings = Settings()
    create_app(settings).run(debug=settings.debug, host="0.0.0.0", port=settings.port)
