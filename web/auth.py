"""Shared-secret checks for the admin API and the cron trigger.

The admin token may arrive in any of these places, all treated alike:

    x-admin-token: <token>          header
    x-api-key: <token>              header
    Authorization: Bearer <token>   header
    admin-token=<token>             cookie
    ?token=<token>                  query parameter

Comparisons use ``hmac.compare_digest``. An unset secret rejects every
request with 503 rather than accepting an empty token.
"""

from __future__ import annotations

import hmac
import logging
from functools import wraps
from typing import Callable, Optional

from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)

ADMIN_HEADER = "x-admin-token"
API_KEY_HEADER = "x-api-key"
ADMIN_COOKIE = "admin-token"
TOKEN_PARAM = "token"


def _bearer(header: Optional[str]) -> Optional[str]:
    if header and header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


def token_matches(candidate: Optional[str], secret: str) -> bool:
    """Constant-time comparison; empty secrets and candidates never match."""
    if not candidate or not secret:
        return False
    return hmac.compare_digest(candidate.encode(), secret.encode())


def presented_tokens() -> list[str]:
    """Return every admin token candidate carried by the current request."""
    candidates = [
        request.headers.get(ADMIN_HEADER),
        request.headers.get(API_KEY_HEADER),
        _bearer(request.headers.get("Authorization")),
        request.cookies.get(ADMIN_COOKIE),
        request.args.get(TOKEN_PARAM),
    ]
    return [c for c in candidates if c]


def _guard(secret_name: str, accepted: Callable[[str], bool]):
    secret = getattr(current_app.config["SETTINGS"], secret_name)
    if not secret:
        logger.error("%s is not configured; rejecting request to %s", secret_name, request.path)
        return jsonify({"error": "Server authentication is not configured"}), 503
    if not accepted(secret):
        return jsonify({"error": "Unauthorized"}), 401
    return None


def require_admin(view):
    """Reject the request unless it carries the admin token."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        denied = _guard(
            "admin_api_key",
            lambda secret: any(token_matches(t, secret) for t in presented_tokens()),
        )
        return denied or view(*args, **kwargs)

    return wrapper


def require_cron(view):
    """Reject the request unless ``Authorization: Bearer <CRON_SECRET>`` is present."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        denied = _guard(
            "cron_secret",
            lambda secret: token_matches(_bearer(request.headers.get("Authorization")), secret),
        )
        return denied or view(*args, **kwargs)

    return wrapper
