"""
Wikipedia background lookup for event synthesis.

Three steps per entity:
  1. MediaWiki search (srlimit=5)
  2. LLM disambiguation → {"best_title": str | null}, constrained to people,
     companies, investment firms and transactions
  3. Intro extract of the chosen page, truncated

Guards: candidates whose snippet marks a non-corporate subject (song, film,
fashion brand, ...) are removed before and after disambiguation, and a
chosen title sharing no word with the query is rejected as drift.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx
from bs4 import BeautifulSoup
from pydantic import ValidationError

from ..config import WIKI_REJECT_KEYWORDS, get_settings
from ..schemas.llm_outputs import WikiChoiceLLM

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "Not available."
CONTEXT_SEPARATOR = "\n---\n"

WIKI_DISAMBIGUATION_PROMPT = """You pick the right page from encyclopedia search results for a private wealth intelligence desk.

The "Original Query" names a person, company, investment firm or transaction found in business news.
Review the candidate titles and snippets and choose the page that is the most direct match for a
business person, company, private equity / investment firm or financial transaction.

You must NOT choose a page whose snippet shows it is a song, album, film, TV series, video game,
fictional character, band, fashion or clothing brand, or a generic concept.
If no candidate is a good corporate or financial match, answer null.

Respond with JSON: {"best_title": "Exact Page Title"} or {"best_title": null}"""

_WORD_RE = re.compile(r"[\w'-]+", re.UNICODE)


@dataclass
class WikiResult:
    success: bool
    title: str = ""
    summary: str = ""
    error: str = ""


def _words(text: str) -> set:
    return {w.lower() for w in _WORD_RE.findall(text or "")}


def has_query_overlap(query: str, title: str) -> bool:
    """A resolved title must share at least one word with the query."""
    return bool(_words(query) & _words(title))


def is_rejected_description(text: str) -> bool:
    """Whole-word match, so "broadband" or "husband" does not hit "band"."""
    lowered = (text or "").lower()
    return any(re.search(rf"\b{re.escape(k)}\b", lowered) for k in WIKI_REJECT_KEYWORDS)


def _strip_html(snippet: str) -> str:
    return BeautifulSoup(snippet or "", "lxml").get_text(" ", strip=True)


class WikipediaTool:
    """Entity → concise encyclopedia intro. Never raises to the pipeline."""

    def __init__(self, llm_service, api_url: Optional[str] = None, max_chars: Optional[int] = None):
        settings = get_settings()
        self.llm = llm_service
        self.api_url = api_url or settings.wikipedia_api_url
        self.max_chars = max_chars or settings.wikipedia_max_chars
        self.headers = {"User-Agent": "wealth-radar/1.0 (news intelligence pipeline)"}

    async def _search(self, client: httpx.AsyncClient, query: str) -> List[Dict[str, str]]:
        response = await client.get(self.api_url, params={
            "action": "query", "list": "search", "srsearch": query,
            "srlimit": "5", "format": "json",
        })
        response.raise_for_status()
        hits = response.json().get("query", {}).get("search", [])
        return [{"title": h.get("title", ""), "snippet": _strip_html(h.get("snippet", ""))} for h in hits]

    async def _choose_title(self, query: str, candidates: List[Dict[str, str]]) -> Optional[str]:
        prompt = (
            f'Original Query: "{query}"\n\nSearch Results:\n'
            f"{json.dumps(candidates, ensure_ascii=False)}"
        )
        raw = await self.llm.generate_json(prompt, system_prompt=WIKI_DISAMBIGUATION_PROMPT)
        if not isinstance(raw, dict) or "error" in raw:
            return None
        try:
            return WikiChoiceLLM.model_validate(raw).best_title or None
        except ValidationError:
            return None

    async def _extract(self, client: httpx.AsyncClient, title: str) -> Optional[str]:
        response = await client.get(self.api_url, params={
            "action": "query", "prop": "extracts", "exintro": "true", "explaintext": "true",
            "titles": title, "format": "json", "redirects": "1",
        })
        response.raise_for_status()
        pages = response.json().get("query", {}).get("pages", {})
        for page in pages.values():
            if "missing" in page:
                return None
            return page.get("extract") or None
        return None

    async def fetch_summary(self, query: str) -> WikiResult:
        if not query or not query.strip():
            return WikiResult(success=False, error="Query cannot be empty.")
        try:
            async with httpx.AsyncClient(timeout=15.0, headers=self.headers) as client:
                candidates = await self._search(client, query)
                candidates = [c for c in candidates if not is_rejected_description(c["snippet"])]
                if not candidates:
                    return WikiResult(success=False, error=f"No usable search results for '{query}'")

                title = await self._choose_title(query, candidates)
                if not title:
                    return WikiResult(success=False, error=f"No relevant page for '{query}'")
                chosen = next((c for c in candidates if c["title"] == title), None)
                if chosen is None and is_rejected_description(title):
                    return WikiResult(success=False, error=f"Rejected non-corporate page '{title}'")
                if not has_query_overlap(query, title):
                    return WikiResult(success=False, error=f"Rejected '{title}': no overlap with '{query}'")

                extract = await self._extract(client, title)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Wikipedia lookup for '{query}' failed: {e}")
            return WikiResult(success=False, error=str(e))

        if not extract:
            return WikiResult(success=False, title=title, error=f"No extract for '{title}'")
        if len(extract) > self.max_chars:
            extract = extract[:self.max_chars] + "..."
        logger.info(f"📚 Wikipedia context for '{query}' → '{title}'")
        return WikiResult(success=True, title=title, summary=extract)

    async def context_for(self, entities: List[str]) -> str:
        """Summaries for several entities, joined; 'Not available.' when none resolve."""
        summaries = []
        seen_titles = set()
        for entity in entities:
            result = await self.fetch_summary(entity)
            if result.success and result.title not in seen_titles:
                seen_titles.add(result.title)
                summaries.append(f"{result.title}: {result.summary}")
        return CONTEXT_SEPARATOR.join(summaries) if summaries else NOT_AVAILABLE
