"""
Headline extraction from source listing pages.

Order of attempts per source:
  1. JSON-LD: every <script type="application/ld+json"> block is parsed and
     ItemList.itemListElement entries with a name/headline and url are
     collected (also inside @graph). Accepted when it yields at least
     JSONLD_MIN_COUNT items.
  2. Selector strategy, chosen from EXTRACTION_STRATEGIES by the source's
     extractor key (or name). Unknown sources default to ANCHOR.

All links are made absolute against the source base URL, fragments and
javascript:/mailto: links are dropped, short texts are discarded and
duplicate links collapse last-wins.
"""

import json
import logging
import re
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urldefrag, urljoin

from bs4 import BeautifulSoup, Tag

from ..config import get_settings
from ..schemas.base import ExtractionStrategy
from ..schemas.news import CandidateHeadline, NewsSource

logger = logging.getLogger(__name__)

# Sources whose markup needs something other than anchor text + href
EXTRACTION_STRATEGIES: Dict[str, ExtractionStrategy] = {
    "finans": ExtractionStrategy.HEADING_LINK,
    "e24": ExtractionStrategy.HEADING_LINK,
    "borsen": ExtractionStrategy.HEADING_LINK,
    "reuters": ExtractionStrategy.TITLE_ATTRIBUTE,
}

_SKIP_SCHEMES = ("javascript:", "mailto:", "tel:")
_WS_RE = re.compile(r"\s+")

RawPair = Tuple[str, str]  # (text, href)


def _clean_text(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


# ── JSON-LD ──────────────────────────────────────────────────────────────────

def _iter_jsonld_nodes(data) -> Iterable[dict]:
    """Every dict node in a JSON-LD document, following lists and @graph."""
    if isinstance(data, list):
        for item in data:
            yield from _iter_jsonld_nodes(item)
    elif isinstance(data, dict):
        yield data
        graph = data.get("@graph")
        if graph:
            yield from _iter_jsonld_nodes(graph)


def _is_item_list(node: dict) -> bool:
    node_type = node.get("@type")
    if isinstance(node_type, list):
        return "ItemList" in node_type
    return node_type == "ItemList"


def extract_json_ld(soup: BeautifulSoup) -> List[RawPair]:
    pairs: List[RawPair] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text() or ""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping unparseable JSON-LD block")
            continue
        for node in _iter_jsonld_nodes(data):
            if not _is_item_list(node):
                continue
            for element in node.get("itemListElement") or []:
                if not isinstance(element, dict):
                    continue
                # ListItem may nest the article under "item"
                target = element.get("item") if isinstance(element.get("item"), dict) else element
                text = target.get("name") or target.get("headline") or element.get("name") or ""
                href = target.get("url") or element.get("url") or ""
                if isinstance(text, str) and isinstance(href, str) and text and href:
                    pairs.append((text, href))
    return pairs


# ── Selector strategies ──────────────────────────────────────────────────────

def _link_for(el: Tag) -> Optional[Tag]:
    if el.name == "a" and el.get("href"):
        return el
    inner = el.find("a", href=True)
    if inner is not None:
        return inner
    return el.find_parent("a", href=True)


def _anchor_strategy(soup: BeautifulSoup, source: NewsSource) -> List[RawPair]:
    if source.headline_selector:
        elements = soup.select(source.headline_selector)
    else:
        elements = soup.find_all("a", href=True)
    pairs = []
    for el in elements:
        link = _link_for(el)
        if link is not None:
            pairs.append((el.get_text(" ", strip=True), link["href"]))
    return pairs


def _heading_link_strategy(soup: BeautifulSoup, source: NewsSource) -> List[RawPair]:
    pairs = []
    for heading in soup.find_all(["h1", "h2", "h3", "h4"]):
        link = _link_for(heading)
        if link is not None:
            pairs.append((heading.get_text(" ", strip=True), link["href"]))
    return pairs


def _title_attribute_strategy(soup: BeautifulSoup, source: NewsSource) -> List[RawPair]:
    return [(a["title"], a["href"]) for a in soup.find_all("a", href=True, title=True)]


_STRATEGY_FUNCS: Dict[ExtractionStrategy, Callable[[BeautifulSoup, NewsSource], List[RawPair]]] = {
    ExtractionStrategy.ANCHOR: _anchor_strategy,
    ExtractionStrategy.HEADING_LINK: _heading_link_strategy,
    ExtractionStrategy.TITLE_ATTRIBUTE: _title_attribute_strategy,
}


def strategy_for(source: NewsSource) -> ExtractionStrategy:
    key = source.extractor_key or source.name
    return EXTRACTION_STRATEGIES.get(key, ExtractionStrategy.ANCHOR)


# ── Normalisation ────────────────────────────────────────────────────────────

def _normalize(source: NewsSource, pairs: List[RawPair], min_chars: int) -> List[CandidateHeadline]:
    by_link: Dict[str, CandidateHeadline] = {}
    for text, href in pairs:
        href = (href or "").strip()
        if not href or href.startswith("#") or href.lower().startswith(_SKIP_SCHEMES):
            continue
        link, _ = urldefrag(urljoin(source.base_url, href))
        if not link.startswith(("http://", "https://")):
            continue
        headline = _clean_text(text)
        if len(headline) < min_chars:
            continue
        # last occurrence wins
        by_link[link] = CandidateHeadline(
            headline=headline,
            link=link,
            newspaper=source.display_name,
            country=source.country,
            source_name=source.name,
        )
    return list(by_link.values())


def extract_headlines(source: NewsSource, html: str) -> List[CandidateHeadline]:
    """Headline/link candidates for one source page."""
    settings = get_settings()
    soup = BeautifulSoup(html or "", "lxml")

    if source.use_json_ld:
        structured = _normalize(source, extract_json_ld(soup), settings.min_headline_chars)
        if len(structured) >= settings.jsonld_min_count:
            logger.debug(f"{source.name}: {len(structured)} headlines from JSON-LD")
            return structured
        logger.debug(f"{source.name}: JSON-LD gave {len(structured)} items, using selector strategy")

    strategy = strategy_for(source)
    pairs = _STRATEGY_FUNCS[strategy](soup, source)
    return _normalize(source, pairs, settings.min_headline_chars)
