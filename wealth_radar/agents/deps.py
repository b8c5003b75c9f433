"""
Shared dependency container for the pipeline agents.

Every stage receives one PipelineDeps and reaches its collaborators through
properties that build the default implementation on first use. Tests (and
alternative deployments) inject their own objects through the constructor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class PipelineDeps:
    """Collaborators for one pipeline run (lazy-initialized)."""

    def __hash__(self):
        return id(self)

    mock_mode: bool = False

    _llm_service: Optional[object] = field(default=None, repr=False)
    _search_tool: Optional[object] = field(default=None, repr=False)
    _embedding_tool: Optional[object] = field(default=None, repr=False)
    _wikipedia_tool: Optional[object] = field(default=None, repr=False)
    _emailer: Optional[object] = field(default=None, repr=False)
    _pusher: Optional[object] = field(default=None, repr=False)
    _store: Optional[object] = field(default=None, repr=False)
    _vector_index: Optional[object] = field(default=None, repr=False)
    _broadcaster: Optional[object] = field(default=None, repr=False)
    # Page fetcher is run-scoped (shared browser) and set by the runner
    page_fetcher: Optional[object] = field(default=None, repr=False)

    @classmethod
    def create(cls, mock_mode: bool = False, **overrides) -> PipelineDeps:
        """Create deps with settings-aware mock mode. Overrides use the field names without underscore."""
        from ..config import get_settings
        effective_mock = mock_mode or get_settings().mock_mode
        kwargs = {f"_{k}" if k != "page_fetcher" else k: v for k, v in overrides.items()}
        return cls(mock_mode=effective_mock, **kwargs)

    # ── Tool properties (lazy init) ──────────────────────────────────

    @property
    def llm_service(self):
        if self._llm_service is None:
            from ..tools.llm_service import LLMService
            self._llm_service = LLMService(mock_mode=self.mock_mode)
        return self._llm_service

    @property
    def search_tool(self):
        if self._search_tool is None:
            from ..tools.tavily_tool import TavilyTool
            self._search_tool = TavilyTool(mock_mode=self.mock_mode)
        return self._search_tool

    @property
    def embedding_tool(self):
        if self._embedding_tool is None:
            from ..tools.embeddings import EmbeddingTool
            self._embedding_tool = EmbeddingTool()
        return self._embedding_tool

    @property
    def wikipedia_tool(self):
        if self._wikipedia_tool is None:
            from ..tools.wikipedia_tool import WikipediaTool
            self._wikipedia_tool = WikipediaTool(self.llm_service)
        return self._wikipedia_tool

    @property
    def emailer(self):
        if self._emailer is None:
            from ..tools.brevo_tool import BrevoTool
            self._emailer = BrevoTool()
        return self._emailer

    @property
    def pusher(self):
        if self._pusher is None:
            from ..tools.telegram_tool import TelegramTool
            self._pusher = TelegramTool()
        return self._pusher

    @property
    def store(self):
        if self._store is None:
            from ..database import get_store
            self._store = get_store()
        return self._store

    @property
    def vector_index(self):
        """None when disabled or when the index cannot be opened."""
        if self._vector_index is None:
            from ..config import get_settings
            if not get_settings().vector_index_enabled:
                return None
            from ..tools.vector_index import VectorIndex
            try:
                self._vector_index = VectorIndex()
            except Exception as e:
                logger.warning(f"Vector index unavailable: {e}")
                return None
        return self._vector_index

    @property
    def broadcaster(self):
        if self._broadcaster is None:
            from .realtime import get_broadcaster
            self._broadcaster = get_broadcaster()
        return self._broadcaster
