"""
Shared fixtures and fakes for the test suite.

Every collaborator the pipeline reaches through PipelineDeps has a fake here.
The fake intelligence service answers from scripted responses keyed by the
agent's system prompt and falls back to the offline mock responder, so a
full run works without network access.
"""

import asyncio
import hashlib
import json
import re
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from wealth_radar.agents.deps import PipelineDeps
from wealth_radar.agents.realtime import RealtimeBroadcaster
from wealth_radar.config import get_settings
from wealth_radar.database import DocumentStore
from wealth_radar.pipeline.context import RunContext
from wealth_radar.schemas.news import Article
from wealth_radar.tools.brevo_tool import EmailResult
from wealth_radar.tools.embeddings import EmbeddingTool
from wealth_radar.tools.mock_responses import get_mock_response
from wealth_radar.tools.telegram_tool import PushResult
from wealth_radar.tools.wikipedia_tool import NOT_AVAILABLE


# ════════════════════════════════════════════════════════════════════
# Settings
# ════════════════════════════════════════════════════════════════════

_TEST_ENV = {
    "ENVIRONMENT": "development",
    "MOCK_MODE": "false",
    "REFRESH_MODE": "false",
    "BROWSER_ENABLED": "false",
    "VECTOR_INDEX_ENABLED": "false",
    "SUPERVISOR_EMAIL": "",
    "API_KEY": "",
    "OPENAI_API_KEY": "",
    "GROQ_API_KEY": "",
    "USE_OLLAMA": "false",
    "TAVILY_API_KEYS": "",
    "BREVO_API_KEY": "",
    "BREVO_SENDER_EMAIL": "",
    "TELEGRAM_BOT_TOKEN": "",
    "HF_API_KEY": "",
    "FORCE_EMAIL_SEND_DEV": "false",
    "STORE_RETRY_BACKOFF_SECONDS": "0",
}


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Isolated settings per test. Use set_env to override more values."""
    for key, value in _TEST_ENV.items():
        monkeypatch.setenv(key, value)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def set_env(monkeypatch):
    def _set(**env):
        for key, value in env.items():
            monkeypatch.setenv(key, str(value))
        get_settings.cache_clear()
    return _set


# ════════════════════════════════════════════════════════════════════
# Fakes
# ════════════════════════════════════════════════════════════════════

Response = Any  # dict, list, or callable(prompt) -> dict/list


class FakeLLM:
    """Scripted intelligence service.

    `responses` maps a system prompt to a payload or to a callable taking the
    user prompt. Unscripted prompts get the offline mock responder's answer.
    """

    def __init__(self, responses: Optional[Dict[str, Response]] = None, available: bool = True):
        self.responses = dict(responses or {})
        self.available = available
        self.sanity_answer = "Paris."
        self.calls: List[Dict[str, str]] = []

    def has_available_provider(self) -> bool:
        return self.available

    async def generate_json(self, prompt, system_prompt=None, examples=None, temperature=None, max_retries=None):
        self.calls.append({"system_prompt": system_prompt or "", "prompt": prompt})
        if system_prompt in self.responses:
            response = self.responses[system_prompt]
            return response(prompt) if callable(response) else response
        return json.loads(get_mock_response(prompt, system_prompt or ""))

    async def generate(self, prompt, system_prompt=None, temperature=None) -> str:
        if isinstance(self.sanity_answer, Exception):
            raise self.sanity_answer
        return self.sanity_answer

    def calls_for(self, system_prompt: str) -> List[str]:
        return [c["prompt"] for c in self.calls if c["system_prompt"] == system_prompt]


class FakeSearch:
    """Search tool returning canned snippets for every query."""

    def __init__(self, results: Optional[List[Dict[str, str]]] = None):
        self.results = list(results or [])
        self.calls: List[Dict[str, Any]] = []

    async def search_snippets(self, query, max_results=5, topic="general", exclude_domains=None):
        self.calls.append({"query": query, "topic": topic, "exclude_domains": list(exclude_domains or [])})
        return list(self.results[:max_results])


class FakeFetcher:
    """Page fetcher over a url → html map. Unknown urls fail like a dead page."""

    def __init__(self, pages: Optional[Dict[str, str]] = None):
        self.pages = dict(pages or {})
        self.fetched: List[str] = []

    async def fetch(self, url: str) -> Optional[str]:
        self.fetched.append(url)
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        return page

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None


class FakeEmbedder(EmbeddingTool):
    """Deterministic bag-of-words hashing embedder; similar wording → similar vectors."""

    DIM = 64

    def __init__(self):
        super().__init__()
        self._embedding_dim = self.DIM
        self._dim_locked = True

    def _vector(self, text: str) -> List[float]:
        vec = [0.0] * self.DIM
        for word in re.findall(r"\w+", (text or "").lower()):
            vec[int(hashlib.md5(word.encode()).hexdigest(), 16) % self.DIM] += 1.0
        return vec

    def embed_text(self, text: str) -> List[float]:
        return self._vector(text)

    def embed_batch(self, texts, batch_size: int = 32):
        return [self._vector(t) for t in texts]


class FakeEmailer:
    def __init__(self, success: bool = True, skipped: bool = False):
        self.success = success
        self.skipped = skipped
        self.sent: List[Dict[str, str]] = []

    async def send_email(self, to_email, subject, html_content, to_name="", text_content=""):
        self.sent.append({"to": to_email, "subject": subject, "html": html_content, "text": text_content})
        return EmailResult(
            success=self.success and not self.skipped,
            skipped=self.skipped,
            recipient=to_email,
            subject=subject,
            error="" if self.success else "smtp down",
        )


class FakePusher:
    def __init__(self, success: bool = True, skipped: bool = False):
        self.success = success
        self.skipped = skipped
        self.sent: List[Dict[str, str]] = []

    async def send_message(self, chat_id, text):
        self.sent.append({"chat_id": chat_id, "text": text})
        return PushResult(success=self.success and not self.skipped, skipped=self.skipped, chat_id=chat_id)


class FakeWikipedia:
    def __init__(self, summaries: Optional[Dict[str, str]] = None):
        self.summaries = dict(summaries or {})
        self.queries: List[List[str]] = []

    async def context_for(self, entities):
        self.queries.append(list(entities))
        found = [f"{e}: {self.summaries[e]}" for e in entities if e in self.summaries]
        return "\n---\n".join(found) if found else NOT_AVAILABLE


# ════════════════════════════════════════════════════════════════════
# Builders
# ════════════════════════════════════════════════════════════════════

def make_article(n: int = 1, **overrides) -> Article:
    fields = {
        "link": f"https://borsen.dk/nyheder/{n}",
        "headline": f"Founder sells family company number {n} to private equity",
        "newspaper": "Børsen",
        "country": "Denmark",
        "source_name": "borsen",
    }
    fields.update(overrides)
    return Article(**fields)


def article_html(*paragraphs: str) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return f"<html><body><article>{body}</article></body></html>"


LONG_PARAGRAPH = (
    "The founding family has agreed to sell its entire stake in the company to a Nordic private "
    "equity fund, according to people familiar with the transaction. The deal values the business "
    "at roughly two billion kroner and is expected to close before the end of the quarter."
)


def listing_html(items: List[tuple]) -> str:
    """Listing page with one <h2><a> per (headline, href)."""
    links = "".join(f'<h2><a href="{href}">{headline}</a></h2>' for headline, href in items)
    return f"<html><body>{links}</body></html>"


# ════════════════════════════════════════════════════════════════════
# Fixtures
# ════════════════════════════════════════════════════════════════════

@pytest.fixture
def store(tmp_path):
    store = DocumentStore(database_url=f"sqlite:///{tmp_path / 'radar.db'}")
    store.create_tables()
    return store


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def search():
    return FakeSearch()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def emailer():
    return FakeEmailer()


@pytest.fixture
def pusher():
    return FakePusher()


@pytest.fixture
def wikipedia():
    return FakeWikipedia()


@pytest.fixture
def deps(store, llm, search, fetcher, embedder, emailer, pusher, wikipedia):
    return PipelineDeps.create(
        llm_service=llm,
        search_tool=search,
        embedding_tool=embedder,
        wikipedia_tool=wikipedia,
        emailer=emailer,
        pusher=pusher,
        store=store,
        broadcaster=RealtimeBroadcaster(),
        page_fetcher=fetcher,
    )


@pytest.fixture
def make_ctx():
    """RunContext factory; build inside the test's event loop when it matters."""
    def _make(**kwargs) -> RunContext:
        return RunContext(**kwargs)
    return _make


def run(coro_fn: Callable, *args, **kwargs):
    """Drive an async callable from a sync test."""
    return asyncio.run(coro_fn(*args, **kwargs))


_RealAsyncClient = httpx.AsyncClient


def mock_http(monkeypatch, handler):
    """Route every httpx.AsyncClient through a MockTransport. Returns the recorded requests."""
    requests = []

    def _recording(request):
        requests.append(request)
        return handler(request)

    def _factory(*args, **kwargs):
        kwargs.pop("transport", None)
        return _RealAsyncClient(*args, transport=httpx.MockTransport(_recording), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", _factory)
    return requests
