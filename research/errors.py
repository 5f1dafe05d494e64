"""Exception hierarchy for the research pipeline."""

from __future__ import annotations


class ResearchError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(ResearchError):
    """A required credential or setting is missing."""


class SearchError(ResearchError):
    """The search/scrape service failed for one request."""


class AnalysisError(ResearchError):
    """The generative-text service failed to analyse one document."""


class NotFoundError(ResearchError):
    """A requested row does not exist."""


class QueryNotFoundError(NotFoundError):
    def __init__(self, query_id: str) -> None:
        super().__init__(f"Query not found: {query_id}")
        self.query_id = query_id


class SourceNotFoundError(NotFoundError):
    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source not found: {source_id}")
        self.source_id = source_id
