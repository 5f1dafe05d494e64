"""Source type classification.

Infers a ``SourceType`` for a newly registered source from its URL when the
admin does not pick one:

- JOURNAL  Medical journals and literature indexes (PubMed, NEJM, JAMA, …)
- NEWS     Health news outlets
- SOCIAL   Social networks, forums, video platforms
- BLOG     Hosted blog platforms and ``blog.``/``/blog`` URLs
- WEBSITE  Anything else (clinics, associations, agencies)
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urlparse

from research.models import SourceType

logger = logging.getLogger(__name__)


# ── Domain allow-lists ─────────────────────────────────────────────────────────

_JOURNAL_DOMAINS: frozenset[str] = frozenset([
    "pubmed.ncbi.nlm.nih.gov", "pmc.ncbi.nlm.nih.gov", "ncbi.nlm.nih.gov",
    "nejm.org", "jamanetwork.com", "thelancet.com", "bmj.com",
    "annals.org", "nature.com", "science.org", "cell.com",
    "sciencedirect.com", "springer.com", "link.springer.com",
    "onlinelibrary.wiley.com", "plos.org", "journals.plos.org",
    "frontiersin.org", "mdpi.com", "biorxiv.org", "medrxiv.org",
    "cochranelibrary.com", "aafp.org",
])

_NEWS_DOMAINS: frozenset[str] = frozenset([
    "statnews.com", "medscape.com", "medpagetoday.com", "healthline.com",
    "fiercehealthcare.com", "kffhealthnews.org", "modernhealthcare.com",
    "reuters.com", "apnews.com", "nytimes.com", "npr.org", "bbc.com",
    "cnn.com", "sciencedaily.com", "medicalnewstoday.com",
])

_SOCIAL_DOMAINS: frozenset[str] = frozenset([
    "reddit.com", "twitter.com", "x.com", "facebook.com", "linkedin.com",
    "instagram.com", "youtube.com", "youtu.be", "tiktok.com",
    "news.ycombinator.com", "quora.com",
])

_BLOG_DOMAINS: frozenset[str] = frozenset([
    "medium.com", "substack.com", "wordpress.com", "blogspot.com",
    "ghost.io", "tumblr.com",
])

_BLOG_PATH_RE = re.compile(r"(?:^|/)blogs?(?:/|$)", re.IGNORECASE)
_WWW_PREFIX = re.compile(r"^www\.")


def hostname(url: str) -> str:
    """Return the bare, lower-cased hostname of *url* without ``www.``.

    Bare domains (``example.com``) are accepted as well as full URLs.
    """
    parsed = urlparse(url if "//" in url else f"//{url}")
    return _WWW_PREFIX.sub("", (parsed.hostname or "").lower())


def _matches(host: str, domains: frozenset[str]) -> bool:
    """True if *host* is one of *domains* or a subdomain of one."""
    return any(host == d or host.endswith("." + d) for d in domains)


def classify_source_type(url: str) -> SourceType:
    """Classify a source URL into a ``SourceType``.

    Args:
        url: The source's home page or section URL.

    Returns:
        The detected ``SourceType``; ``SourceType.OTHER`` if the URL has no
        host, ``SourceType.WEBSITE`` if nothing more specific matches.

    Examples:
        >>> classify_source_type("https://pubmed.ncbi.nlm.nih.gov/")
        <SourceType.JOURNAL: 'journal'>
        >>> classify_source_type("https://www.statnews.com/health/")
        <SourceType.NEWS: 'news'>
        >>> classify_source_type("https://example-clinic.com/blog/")
        <SourceType.BLOG: 'blog'>
    """
    host = hostname(url)
    if not host:
        logger.debug("No host in source URL: %r", url)
        return SourceType.OTHER

    if _matches(host, _JOURNAL_DOMAINS):
        return SourceType.JOURNAL
    if _matches(host, _NEWS_DOMAINS):
        return SourceType.NEWS
    if _matches(host, _SOCIAL_DOMAINS):
        return SourceType.SOCIAL
    if _matches(host, _BLOG_DOMAINS) or host.startswith("blog."):
        return SourceType.BLOG

    path = urlparse(url if "//" in url else f"//{url}").path
    if _BLOG_PATH_RE.search(path):
        return SourceType.BLOG

    return SourceType.WEBSITE
