"""Search/scrape client for the Firecrawl API.

Responsibilities:
- Issue ``POST /search`` requests with optional result scraping
- Map the response items to ``RawDocument`` objects
- Raise ``SearchError`` on transport failures, non-2xx responses or
  ``success: false`` payloads so the caller can record the failure

No retries are attempted here; a failed search is reported, not repeated.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

import requests

from research.errors import ConfigurationError, SearchError
from research.models import RawDocument

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

#: Metadata keys that may carry a publication timestamp, in preference order.
_PUBLISHED_KEYS: tuple[str, ...] = (
    "publishedTime",
    "article:published_time",
    "publishDate",
    "datePublished",
    "date",
)


def _published_date(metadata: dict[str, Any]) -> Optional[datetime]:
    """Return the first parseable ISO-8601 publication date in *metadata*."""
    for key in _PUBLISHED_KEYS:
        value = metadata.get(key)
        if not isinstance(value, str) or not value.strip():
            continue
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable %s=%r", key, value)
    return None


def _to_document(item: dict[str, Any]) -> Optional[RawDocument]:
    url = item.get("url") or (item.get("metadata") or {}).get("sourceURL")
    if not url:
        return None
    metadata = item.get("metadata") or {}
    return RawDocument(
        title=item.get("title") or metadata.get("title") or "",
        url=url,
        content=item.get("markdown") or item.get("content") or "",
        description=item.get("description") or "",
        published_date=_published_date(metadata),
    )


class FirecrawlClient:
    """Thin wrapper over the Firecrawl REST API.

    The HTTP session is lazy-initialised so the client can be constructed
    in tests without credentials.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._session: Optional[requests.Session] = None

    @property
    def session(self) -> requests.Session:
        """Lazy-initialise and return the authenticated ``requests.Session``."""
        if self._session is None:
            if not self.settings.firecrawl_api_key:
                raise ConfigurationError("FIRECRAWL_API_KEY environment variable is not set.")
            session = requests.Session()
            session.headers.update({
                "Authorization": f"Bearer {self.settings.firecrawl_api_key}",
                "Content-Type": "application/json",
            })
            self._session = session
        return self._session

    def search_web(
        self,
        query: str,
        limit: int = 10,
        scrape_results: bool = True,
        formats: Optional[list[str]] = None,
    ) -> list[RawDocument]:
        """Search the web and optionally scrape each hit.

        Args:
            query: Search text, may include operators such as ``site:``.
            limit: Maximum number of hits to return.
            scrape_results: Ask the service to fetch each hit's page content.
            formats: Content formats to scrape (default ``["markdown"]``).

        Returns:
            One ``RawDocument`` per hit that carries a URL.

        Raises:
            SearchError: On network failure or an unsuccessful response.
        """
        payload: dict[str, Any] = {"query": query, "limit": limit}
        if scrape_results:
            payload["scrapeOptions"] = {"formats": formats or ["markdown"]}

        url = f"{self.settings.firecrawl_base_url.rstrip('/')}/search"
        logger.info("Firecrawl search query=%r limit=%d", query, limit)

        try:
            response = self.session.post(url, json=payload, timeout=self.settings.request_timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            raise SearchError(f"Search request failed: {exc}") from exc
        except ValueError as exc:
            raise SearchError(f"Search returned invalid JSON: {exc}") from exc

        if not isinstance(body, dict):
            raise SearchError(f"Search returned unexpected payload: {type(body).__name__}")
        if not body.get("success", False):
            raise SearchError(body.get("error") or "Search failed")

        documents = [doc for doc in map(_to_document, body.get("data") or []) if doc]
        logger.info("Firecrawl search complete: %d documents", len(documents))
        return documents
