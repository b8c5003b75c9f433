"""
Domain extraction utilities for article links.

Used by verification to skip the original outlet and social/aggregator
domains when looking for the same story elsewhere.
"""

import logging
from typing import Iterable, Optional
from urllib.parse import urlparse

import tldextract

from ..config import SOURCE_BLACKLIST

logger = logging.getLogger(__name__)

# Bundled public-suffix snapshot only, never fetched at runtime
_extract = tldextract.TLDExtract(suffix_list_urls=())


def extract_clean_domain(url: str) -> Optional[str]:
    """
    Registered domain of a URL.

    Examples:
        "https://www.dn.no/naeringsliv/x" → "dn.no"
        "https://e24.no/a/b" → "e24.no"
        "not a url" → None
    """
    if not url:
        return None
    extracted = _extract(url.strip())
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}".lower()

    try:
        hostname = urlparse(url).netloc.lower()
    except ValueError:
        return None
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname or None


def is_excluded_domain(url: str, extra: Iterable[str] = ()) -> bool:
    """True when the URL belongs to a blacklisted domain or one of `extra`."""
    domain = extract_clean_domain(url)
    if not domain:
        return True
    excluded = set(SOURCE_BLACKLIST) | {d.lower() for d in extra if d}
    return domain in excluded
