"""
Headline scraping and article body extraction.

SCRAPING:
  Every active source is fetched concurrently (bounded by the run
  semaphore). A failing or empty source yields [] and an unsuccessful
  ScraperHealth entry; it never aborts the other sources.

ARTICLE TEXT:
  Source-specific article selector first, then trafilatura, then a plain
  BeautifulSoup paragraph sweep. Returned as a list of paragraphs.
"""

import logging
from typing import List, Optional, Tuple

import trafilatura
from bs4 import BeautifulSoup

from ..schemas.news import CandidateHeadline, NewsSource
from ..schemas.pipeline import ScraperHealth
from .extractor import extract_headlines

logger = logging.getLogger(__name__)

# Paywall/boilerplate noise from trafilatura is expected and not actionable
for _noisy in ("trafilatura", "trafilatura.core", "trafilatura.utils", "trafilatura.htmlprocessing"):
    logging.getLogger(_noisy).setLevel(logging.CRITICAL)

_MIN_PARAGRAPH_CHARS = 30


async def scrape_source(source: NewsSource, fetcher) -> Tuple[List[CandidateHeadline], ScraperHealth]:
    """Fetch one listing page and extract its headlines."""
    try:
        html = await fetcher.fetch(source.listing_url)
        if not html:
            raise ValueError("empty or failed page fetch")
        candidates = extract_headlines(source, html)
    except Exception as e:
        logger.warning(f"⚠️ Source {source.name} failed: {e}")
        return [], ScraperHealth(source=source.name, success=False, count=0, error=str(e)[:300])

    if not candidates:
        logger.warning(f"⚠️ Source {source.name}: no headlines extracted")
        return [], ScraperHealth(source=source.name, success=False, count=0, error="no headlines extracted")

    logger.info(f"📰 {source.name}: {len(candidates)} headlines")
    return candidates, ScraperHealth(source=source.name, success=True, count=len(candidates))


async def scrape_all_headlines(
    sources: List[NewsSource],
    fetcher,
    ctx,
) -> Tuple[List[CandidateHeadline], List[ScraperHealth]]:
    """Scrape every source with settle-all semantics."""
    results = await ctx.gather_settled([
        ctx.run_bounded(scrape_source, source, fetcher) for source in sources
    ])

    candidates: List[CandidateHeadline] = []
    health: List[ScraperHealth] = []
    for source, result in zip(sources, results):
        if isinstance(result, BaseException):
            logger.error(f"Source {source.name} crashed: {result}")
            health.append(ScraperHealth(source=source.name, success=False, error=str(result)[:300]))
            continue
        found, entry = result
        candidates.extend(found)
        health.append(entry)
    return candidates, health


def _paragraphs_from_selector(html: str, selector: str) -> List[str]:
    soup = BeautifulSoup(html, "lxml")
    paragraphs = []
    for container in soup.select(selector):
        blocks = container.find_all("p") or [container]
        for block in blocks:
            text = block.get_text(" ", strip=True)
            if len(text) >= _MIN_PARAGRAPH_CHARS:
                paragraphs.append(text)
    return paragraphs


def _paragraphs_from_trafilatura(html: str) -> List[str]:
    text = trafilatura.extract(
        html,
        include_comments=False,
        include_tables=False,
        favor_precision=True,
        deduplicate=True,
    )
    if not text:
        return []
    return [p.strip() for p in text.split("\n") if p.strip()]


def _paragraphs_from_soup(html: str) -> List[str]:
    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(["nav", "header", "footer", "script", "style", "aside"]):
        tag.decompose()
    return [
        p.get_text(" ", strip=True) for p in soup.find_all("p")
        if len(p.get_text(strip=True)) >= _MIN_PARAGRAPH_CHARS
    ]


def extract_article_paragraphs(html: str, article_selector: Optional[str] = None) -> List[str]:
    if not html:
        return []
    if article_selector:
        paragraphs = _paragraphs_from_selector(html, article_selector)
        if paragraphs:
            return paragraphs
    try:
        paragraphs = _paragraphs_from_trafilatura(html)
    except Exception as e:
        logger.debug(f"trafilatura failed: {e}")
        paragraphs = []
    return paragraphs or _paragraphs_from_soup(html)


async def fetch_article_paragraphs(url: str, fetcher, article_selector: Optional[str] = None) -> List[str]:
    """Fetch an article page and return its body paragraphs ([] when unavailable)."""
    html = await fetcher.fetch(url)
    if not html:
        return []
    return extract_article_paragraphs(html, article_selector)
