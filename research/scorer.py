"""AI content scoring using the Claude API.

Each fetched document is analysed once in the context of the query that
found it. The model is asked for four labelled sections:

    Summary:     2–3 sentences
    Key Points:  up to 5 bullets
    Relevance:   a number between 0 and 1
    Topics:      comma-separated list

``parse_analysis`` turns that free text back into an ``Analysis``. It never
raises: a missing section falls back to an empty value (relevance to 0.5)
and the relevance is clamped into [0, 1] whatever the model claims.

The Anthropic client is lazy-initialised so that the class can be
instantiated in tests without requiring a live API key.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from research.errors import AnalysisError, ConfigurationError
from research.models import (
    MAX_KEY_POINTS,
    Analysis,
    RawDocument,
    Result,
    Source,
    clamp_score,
)

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

#: Characters of document content sent to the model.
ANALYSIS_CHAR_BUDGET = 3000
#: Characters of document content kept in storage.
STORED_CONTENT_CHARS = 5000
#: Relevance used when the model gives none we can read.
DEFAULT_RELEVANCE = 0.5


# ── Prompt ─────────────────────────────────────────────────────────────────────

_ANALYSIS_TEMPLATE = """Analyze the following medical/health content in the context of this query: "{query_text}"

Content:
{content}

Respond using exactly these labelled sections:
Summary: a concise summary (2-3 sentences)
Key Points:
- up to 5 key points, one per line
Relevance: a single number between 0 and 1 for how relevant the content is to the query
Topics: the main topics covered, comma-separated"""


def build_analysis_prompt(query_text: str, content: str) -> str:
    """Return the analysis prompt for *content*, truncated to the char budget."""
    return _ANALYSIS_TEMPLATE.format(
        query_text=query_text,
        content=content[:ANALYSIS_CHAR_BUDGET],
    )


# ── Response parsing ───────────────────────────────────────────────────────────

#: A section label at the start of a line, tolerating markdown decoration
#: such as ``**Key Points:**`` or ``## Summary``.
_LABEL_RE = re.compile(
    r"^[\s#>*_\-\d.)]*"
    r"(?P<label>summary|key\s*points|relevance(?:\s*score)?|(?:main\s+)?topics(?:\s*covered)?)"
    r"[\s*_]*:[\s*_]*(?P<rest>.*)$",
    re.IGNORECASE,
)
_NUMBER_RE = re.compile(r"-?\d*\.?\d+")
#: A relevance label anywhere in a line, e.g. ``Overall Relevance: 0.9`` or
#: ``Relevance score (0-1): 0.9``.
_INLINE_RELEVANCE_RE = re.compile(r"relevance[^:\n]*:\s*(-?\d*\.?\d+)", re.IGNORECASE)
_BULLET_RE = re.compile(r"^\s*(?:[-•*]+|\d+[.)])\s*")
_TOPIC_SPLIT_RE = re.compile(r"[,;\n]")


def _canonical(label: str) -> str:
    label = label.lower()
    if label.startswith("summary"):
        return "summary"
    if label.startswith("key"):
        return "key_points"
    if label.startswith("relevance"):
        return "relevance"
    return "topics"


def _sections(text: str) -> dict[str, list[str]]:
    """Split *text* into labelled sections; the first occurrence of a label wins."""
    sections: dict[str, list[str]] = {}
    current: Optional[list[str]] = None
    for line in text.splitlines():
        match = _LABEL_RE.match(line)
        if match:
            name = _canonical(match.group("label"))
            if name in sections:
                current = None
                continue
            current = sections[name] = []
            rest = match.group("rest").strip()
            if rest:
                current.append(rest)
        elif _INLINE_RELEVANCE_RE.search(line):
            current = None
        elif current is not None:
            current.append(line)
    return sections


def _clean(line: str) -> str:
    return line.strip().strip("*_").strip()


def _parse_relevance(lines: list[str], text: str) -> float:
    for line in lines:
        match = _NUMBER_RE.search(line)
        if match:
            return clamp_score(float(match.group(0)))
    match = _INLINE_RELEVANCE_RE.search(text)
    if match:
        return clamp_score(float(match.group(1)))
    return DEFAULT_RELEVANCE


def parse_analysis(text: str) -> Analysis:
    """Extract summary, key points, relevance and topics from model output.

    Args:
        text: The model's free-text response.

    Returns:
        An ``Analysis``; absent sections default to ``""``, ``[]`` or
        ``DEFAULT_RELEVANCE``.

    Examples:
        >>> parse_analysis("Relevance: 1.7").relevance
        1.0
        >>> parse_analysis("Summary: Short.").relevance
        0.5
    """
    sections = _sections(text or "")

    summary_lines = [_clean(line) for line in sections.get("summary", [])]
    summary = " ".join(line for line in summary_lines if line)

    key_points: list[str] = []
    for line in sections.get("key_points", []):
        point = _clean(_BULLET_RE.sub("", line.strip()))
        if point:
            key_points.append(point)

    topics: list[str] = []
    for line in sections.get("topics", []):
        for topic in _TOPIC_SPLIT_RE.split(_BULLET_RE.sub("", line.strip())):
            topic = _clean(topic).rstrip(".")
            if topic:
                topics.append(topic)

    return Analysis(
        summary=summary,
        key_points=key_points[:MAX_KEY_POINTS],
        relevance=_parse_relevance(sections.get("relevance", []), text or ""),
        topics=topics,
    )


# ── Scorer ─────────────────────────────────────────────────────────────────────


class ContentScorer:
    """Analyses documents with the Claude API and builds scored ``Result``s."""

    def __init__(self, settings: Settings) -> None:
        """Initialise the scorer.

        Args:
            settings: Application configuration.
        """
        self.settings = settings
        self._client: object = None  # Lazy-initialised anthropic.Anthropic

    @property
    def client(self) -> object:
        """Lazy-initialise and return the Anthropic SDK client."""
        if self._client is None:
            if not self.settings.anthropic_api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY environment variable is not set.")
            import anthropic
            # max_retries=0: a failed analysis is recorded and skipped, never retried.
            self._client = anthropic.Anthropic(
                api_key=self.settings.anthropic_api_key,
                max_retries=0,
                timeout=self.settings.request_timeout,
            )
        return self._client

    def generate_response(self, prompt: str) -> str:
        """Send *prompt* to the model and return the concatenated text blocks.

        Raises:
            AnalysisError: On any API failure.
        """
        try:
            response = self.client.messages.create(
                model=self.settings.analysis_model,
                max_tokens=self.settings.analysis_max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except ConfigurationError:
            raise
        except Exception as exc:
            raise AnalysisError(f"Analysis request failed: {exc}") from exc

        return "".join(
            getattr(block, "text", "") for block in response.content
            if getattr(block, "type", None) == "text"
        )

    def score(
        self,
        document: RawDocument,
        query_text: str,
        source: Optional[Source] = None,
    ) -> Result:
        """Analyse one document and return it as a ``Result``.

        Args:
            document: The fetched document (must have content).
            query_text: Text of the query that found the document.
            source: The source the document came from, if any.

        Raises:
            AnalysisError: If the model call fails.
        """
        prompt = build_analysis_prompt(query_text, document.content)
        analysis = parse_analysis(self.generate_response(prompt))
        return Result(
            source_id=source.id if source else None,
            source_name=source.name if source else None,
            title=document.title or "Untitled",
            url=document.url,
            content=document.content[:STORED_CONTENT_CHARS],
            summary=analysis.summary,
            key_points=analysis.key_points,
            relevance_score=analysis.relevance,
            topics=analysis.topics,
            published_date=document.published_date,
        )
