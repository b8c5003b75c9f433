"""
Tavily Search Tool — web search for article verification and contact research.

Never raises to the pipeline: on a missing key, exhausted quota or API error
the caller gets an empty result and a "service unavailable" warning.

Key rotation: set TAVILY_API_KEYS (comma-separated) in .env.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from tavily import AsyncTavilyClient
from tavily.errors import InvalidAPIKeyError, UsageLimitExceededError

from ..config import get_settings

logger = logging.getLogger(__name__)


class TavilyTool:
    """
    Thin Tavily wrapper.

      search()          — raw result dict, or {"error": ..., "results": []}
      search_snippets() — normalised [{title, link, snippet, source}]
    """

    _key_index = 0
    _lock = threading.Lock()

    def __init__(self, mock_mode: bool = False):
        self.settings = get_settings()
        self.mock_mode = mock_mode or self.settings.mock_mode
        self._keys = [k.strip() for k in self.settings.tavily_api_keys.split(",") if k.strip()]
        if self._keys:
            logger.info(f"Tavily: {len(self._keys)} key(s) loaded for rotation")

    def _next_key(self) -> str:
        with self._lock:
            key = self._keys[TavilyTool._key_index % len(self._keys)]
            TavilyTool._key_index += 1
            return key

    @property
    def available(self) -> bool:
        return self.settings.tavily_enabled and bool(self._keys)

    async def search(
        self,
        query: str,
        max_results: int = 5,
        topic: str = "general",
        time_range: Optional[str] = None,
        exclude_domains: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Call Tavily and return the raw result dict.

        topic:      "general" | "news"
        time_range: "day" | "week" | "month" | "year"
        """
        if self.mock_mode:
            return self._mock_result(query)
        if not self.available:
            logger.warning("Search service unavailable: Tavily disabled or no keys configured")
            return {"error": "service unavailable", "results": []}

        for _ in range(len(self._keys)):
            key = self._next_key()
            hint = f"...{key[-4:]}"
            kwargs: Dict[str, Any] = dict(
                query=query,
                search_depth="basic",
                max_results=max_results,
                include_answer=False,
                topic=topic,
            )
            if time_range:
                kwargs["time_range"] = time_range
            if exclude_domains:
                kwargs["exclude_domains"] = exclude_domains
            try:
                result = await AsyncTavilyClient(api_key=key).search(**kwargs)
            except (UsageLimitExceededError, InvalidAPIKeyError) as e:
                logger.warning(f"Tavily key {hint} quota/invalid: {e} — rotating")
                continue
            except Exception as e:
                logger.error(f"Tavily [{hint}] error: {e}")
                return {"error": str(e), "results": []}
            logger.info(f"Tavily [{hint}] '{query[:50]}' → {len(result.get('results', []))} results")
            return result

        logger.warning("Search service unavailable: all Tavily keys exhausted")
        return {"error": "service unavailable", "results": []}

    async def search_snippets(
        self,
        query: str,
        max_results: int = 5,
        topic: str = "general",
        exclude_domains: Optional[List[str]] = None,
    ) -> List[Dict[str, str]]:
        """Search and normalise to [{title, link, snippet, source}]. [] on any failure."""
        result = await self.search(
            query, max_results=max_results, topic=topic, exclude_domains=exclude_domains,
        )
        snippets = []
        for r in result.get("results", []):
            link = r.get("url") or ""
            if not link:
                continue
            snippets.append({
                "title": r.get("title") or "",
                "link": link,
                "snippet": (r.get("content") or "")[:500],
                "source": "tavily",
            })
        return snippets

    def _mock_result(self, query: str) -> Dict[str, Any]:
        """Canned results for offline runs."""
        return {
            "results": [{
                "title": f"[MOCK] {query[:80]}",
                "url": "https://example.com/mock-article",
                "content": f"Mock search snippet about {query[:80]}.",
                "score": 0.5,
            }],
        }
