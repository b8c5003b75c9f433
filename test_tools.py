"""Tool layer: delivery, search, encyclopedia lookups, embeddings and fetchers."""

import asyncio

import httpx
import pytest
from playwright.async_api import Error as PlaywrightError

from conftest import FakeLLM, make_article, mock_http, run
from wealth_radar.agents.realtime import CHANNEL_ARTICLES, RealtimeBroadcaster
from wealth_radar.tools import embeddings
from wealth_radar.tools.brevo_tool import BrevoTool
from wealth_radar.tools.domain_utils import extract_clean_domain, is_excluded_domain
from wealth_radar.tools.embeddings import EmbeddingTool
from wealth_radar.tools.page_fetcher import (
    BrowserPageFetcher,
    HttpPageFetcher,
    MockPageFetcher,
    create_page_fetcher,
)
from wealth_radar.tools.tavily_tool import TavilyTool
from wealth_radar.tools.telegram_tool import TelegramTool
from wealth_radar.tools.vector_index import VectorIndex
from wealth_radar.tools.wikipedia_tool import (
    NOT_AVAILABLE,
    WIKI_DISAMBIGUATION_PROMPT,
    WikipediaTool,
    has_query_overlap,
    is_rejected_description,
)


# ════════════════════════════════════════════════════════════════════
# Domains
# ════════════════════════════════════════════════════════════════════

def test_extract_clean_domain():
    assert extract_clean_domain("https://www.dn.no/naeringsliv/x") == "dn.no"
    assert extract_clean_domain("https://e24.no/a/b") == "e24.no"
    assert extract_clean_domain("") is None
    assert extract_clean_domain("http://[bad") is None


def test_excluded_domains():
    assert is_excluded_domain("https://www.linkedin.com/posts/1")
    assert is_excluded_domain("https://borsen.dk/x", ["borsen.dk"])
    assert not is_excluded_domain("https://finans.dk/x", ["borsen.dk"])
    assert is_excluded_domain("")


# ════════════════════════════════════════════════════════════════════
# Email and push
# ════════════════════════════════════════════════════════════════════

def test_email_is_skipped_outside_production(monkeypatch):
    requests = mock_http(monkeypatch, lambda r: httpx.Response(201, json={"messageId": "m1"}))

    result = run(BrevoTool().send_email, "dk@bank.dk", "Hello", "<p>hi</p>")

    assert result.skipped and not result.success
    assert requests == []


def test_email_is_sent_in_production(monkeypatch, set_env):
    set_env(ENVIRONMENT="production", BREVO_API_KEY="xkeysib-test", BREVO_SENDER_EMAIL="radar@bank.dk")
    requests = mock_http(monkeypatch, lambda r: httpx.Response(201, json={"messageId": "m1"}))

    result = run(BrevoTool().send_email, "dk@bank.dk", "Hello", "<p>hi</p>", text_content="hi")

    assert result.success and result.message_id == "m1"
    assert requests[0].headers["api-key"] == "xkeysib-test"
    assert b'"textContent": "hi"' in requests[0].content or b'"textContent":"hi"' in requests[0].content


def test_email_api_error_is_a_failed_result(monkeypatch, set_env):
    set_env(ENVIRONMENT="production", BREVO_API_KEY="k", BREVO_SENDER_EMAIL="radar@bank.dk")
    mock_http(monkeypatch, lambda r: httpx.Response(400, text="bad sender"))

    result = run(BrevoTool().send_email, "dk@bank.dk", "Hello", "<p>hi</p>")

    assert not result.success and not result.skipped
    assert "400" in result.error


def test_push_retries_after_rate_limit(monkeypatch, set_env):
    set_env(ENVIRONMENT="production", TELEGRAM_BOT_TOKEN="123:abc")
    replies = iter([
        httpx.Response(429, json={"parameters": {"retry_after": 0}}),
        httpx.Response(200, json={"ok": True}),
    ])
    requests = mock_http(monkeypatch, lambda r: next(replies))

    result = run(TelegramTool(backoff_seconds=0).send_message, "42", "x" * 5000)

    assert result.success
    assert len(requests) == 2
    assert b"chat_id=42" in requests[-1].content


def test_push_client_error_is_not_retried(monkeypatch, set_env):
    set_env(ENVIRONMENT="production", TELEGRAM_BOT_TOKEN="123:abc")
    requests = mock_http(monkeypatch, lambda r: httpx.Response(400, text="chat not found"))

    result = run(TelegramTool(backoff_seconds=0).send_message, "42", "hi")

    assert not result.success
    assert result.error.startswith("HTTP 400")
    assert len(requests) == 1


def test_push_is_skipped_without_token(set_env):
    set_env(ENVIRONMENT="production")

    result = run(TelegramTool().send_message, "42", "hi")

    assert result.skipped
    assert "TELEGRAM_BOT_TOKEN" in result.error


# ════════════════════════════════════════════════════════════════════
# Search
# ════════════════════════════════════════════════════════════════════

def test_search_without_keys_is_unavailable():
    tool = TavilyTool()

    assert not tool.available
    assert run(tool.search, "Acme sale")["error"] == "service unavailable"
    assert run(tool.search_snippets, "Acme sale") == []


def test_mock_search_returns_normalised_snippets():
    snippets = run(TavilyTool(mock_mode=True).search_snippets, "Acme sale")

    assert snippets == [{
        "title": "[MOCK] Acme sale",
        "link": "https://example.com/mock-article",
        "snippet": "Mock search snippet about Acme sale.",
        "source": "tavily",
    }]


# ════════════════════════════════════════════════════════════════════
# Encyclopedia
# ════════════════════════════════════════════════════════════════════

def _wiki_handler(request):
    params = request.url.params
    if params.get("list") == "search":
        return httpx.Response(200, json={"query": {"search": [
            {"title": "Acme (song)", "snippet": "a <b>song</b> by The Roadrunners"},
            {"title": "Acme A/S", "snippet": "Danish <span>robotics</span> company"},
            {"title": "Zebra Holdings", "snippet": "Norwegian investment company"},
        ]}})
    return httpx.Response(200, json={"query": {"pages": {
        "1": {"title": params.get("titles"), "extract": "Acme A/S is a Danish robotics company. " * 40},
    }}})


def test_has_query_overlap():
    assert has_query_overlap("Anders Holm", "Holm family")
    assert not has_query_overlap("Acme", "Zebra Holdings")


def test_rejected_descriptions_match_whole_words():
    assert is_rejected_description("a song by The Roadrunners")
    assert is_rejected_description("Danish rock band from Aarhus")
    assert is_rejected_description("2019 film directed by Lars Holm")
    assert not is_rejected_description("Norwegian telecommunications and broadband company")
    assert not is_rejected_description("Danish businessman, husband of heiress and investor")
    assert not is_rejected_description("Swedish filmmaker turned media investor")
    assert not is_rejected_description("Danish maker of novelty goods")


def test_wikipedia_keeps_broadband_company_candidates(monkeypatch):
    def _handler(request):
        if request.url.params.get("list") == "search":
            return httpx.Response(200, json={"query": {"search": [
                {"title": "Nordlink ASA", "snippet": "Norwegian telecommunications and broadband company"},
            ]}})
        return httpx.Response(200, json={"query": {"pages": {
            "1": {"title": "Nordlink ASA", "extract": "Nordlink ASA is a Norwegian broadband company."},
        }}})

    mock_http(monkeypatch, _handler)
    llm = FakeLLM({WIKI_DISAMBIGUATION_PROMPT: {"best_title": "Nordlink ASA"}})

    result = run(WikipediaTool(llm).fetch_summary, "Nordlink")

    assert result.success
    assert "broadband company" in llm.calls_for(WIKI_DISAMBIGUATION_PROMPT)[0]


def test_wikipedia_summary_for_a_company(monkeypatch):
    requests = mock_http(monkeypatch, _wiki_handler)
    llm = FakeLLM({WIKI_DISAMBIGUATION_PROMPT: {"best_title": "Acme A/S"}})

    result = run(WikipediaTool(llm, max_chars=100).fetch_summary, "Acme")

    assert result.success
    assert result.title == "Acme A/S"
    assert len(result.summary) == 103 and result.summary.endswith("...")
    offered = llm.calls_for(WIKI_DISAMBIGUATION_PROMPT)[0]
    assert "Acme (song)" not in offered
    assert "Danish robotics company" in offered
    assert requests[-1].url.params["titles"] == "Acme A/S"


def test_wikipedia_rejects_unrelated_title(monkeypatch):
    mock_http(monkeypatch, _wiki_handler)
    llm = FakeLLM({WIKI_DISAMBIGUATION_PROMPT: {"best_title": "Zebra Holdings"}})

    result = run(WikipediaTool(llm).fetch_summary, "Acme")

    assert not result.success
    assert "no overlap" in result.error


def test_wikipedia_null_choice_and_http_errors(monkeypatch):
    mock_http(monkeypatch, _wiki_handler)
    llm = FakeLLM({WIKI_DISAMBIGUATION_PROMPT: {"best_title": None}})
    assert not run(WikipediaTool(llm).fetch_summary, "Acme").success

    mock_http(monkeypatch, lambda r: httpx.Response(503))
    result = run(WikipediaTool(llm).fetch_summary, "Acme")
    assert not result.success and "503" in result.error


def test_wikipedia_context_dedupes_resolved_pages(monkeypatch):
    mock_http(monkeypatch, _wiki_handler)
    llm = FakeLLM({WIKI_DISAMBIGUATION_PROMPT: {"best_title": "Acme A/S"}})
    tool = WikipediaTool(llm, max_chars=50)

    context = run(tool.context_for, ["Acme", "Acme A/S"])

    assert context.count("Acme A/S:") == 1
    assert run(tool.fetch_summary, " ").error == "Query cannot be empty."


def test_wikipedia_context_without_matches(monkeypatch):
    mock_http(monkeypatch, lambda r: httpx.Response(200, json={"query": {"search": []}}))

    assert run(WikipediaTool(FakeLLM()).context_for, ["Nobody"]) == NOT_AVAILABLE


# ════════════════════════════════════════════════════════════════════
# Embeddings and vector index
# ════════════════════════════════════════════════════════════════════

def test_no_embedding_backend_gives_zero_vectors(monkeypatch):
    monkeypatch.setattr(embeddings, "_get_local_model", lambda name: None)
    tool = EmbeddingTool()

    vectors = tool.embed_batch(["Acme sold", ""])

    assert vectors == [[0.0] * 384, [0.0] * 384]
    assert tool.embed_text("   ") == [0.0] * 384


def test_dimension_is_locked_by_first_vector():
    tool = EmbeddingTool()

    assert tool._checked([1.0, 2.0, 3.0]) == [1.0, 2.0, 3.0]
    assert tool._checked([1.0, 2.0]) == [0.0, 0.0, 0.0]


def test_find_similar_ranks_and_filters():
    matches = EmbeddingTool.find_similar(
        [1.0, 0.0],
        [[0.0, 1.0], [1.0, 0.1], [], [1.0, 0.0, 0.0], [1.0, 0.0]],
        top_k=5,
        threshold=0.5,
    )

    assert [m["index"] for m in matches] == [4, 1]
    assert matches[0]["similarity"] == pytest.approx(1.0)


def test_vector_index_skips_zero_vectors(tmp_path):
    index = VectorIndex(db_path=str(tmp_path / "index"))

    written = index.upsert(
        ["a", "b"],
        [[1.0, 0.0], [0.0, 0.0]],
        [{"link": "https://x/a", "missing": None}, {"link": "https://x/b"}],
    )

    assert written == 1
    assert index.count() == 1
    with pytest.raises(ValueError):
        index.upsert(["a"], [])


# ════════════════════════════════════════════════════════════════════
# Fetchers and realtime
# ════════════════════════════════════════════════════════════════════

def test_create_page_fetcher_picks_by_mode():
    assert isinstance(create_page_fetcher(mock_mode=True), MockPageFetcher)
    assert isinstance(create_page_fetcher(browser_enabled=False), HttpPageFetcher)
    assert isinstance(create_page_fetcher(browser_enabled=True), BrowserPageFetcher)


def test_mock_fetcher_serves_listing_and_articles():
    fetcher = MockPageFetcher()

    listing = run(fetcher.fetch, "https://borsen.dk")
    article = run(fetcher.fetch, "https://borsen.dk/mock/1")

    assert "ItemList" in listing and "https://borsen.dk/mock/1" in listing
    assert "<article>" in article and "Founders sell family-owned software group" in article


def test_http_fetcher_returns_none_on_error(monkeypatch):
    mock_http(monkeypatch, lambda r: httpx.Response(404))

    assert run(HttpPageFetcher(timeout=1).fetch, "https://borsen.dk/gone") is None


def test_http_fetcher_returns_none_on_malformed_url(monkeypatch):
    requests = mock_http(monkeypatch, lambda r: httpx.Response(200, text="<html></html>"))
    fetcher = HttpPageFetcher(timeout=1)

    assert run(fetcher.fetch, "https://e24.no:notaport/x") is None
    assert requests == []


class _FailingBrowser:
    async def new_context(self, **kwargs):
        raise PlaywrightError("Target page, context or browser has been closed")


def test_browser_fetcher_returns_none_when_context_cannot_open():
    fetcher = BrowserPageFetcher(timeout=1)
    fetcher._browser = _FailingBrowser()

    assert run(fetcher.fetch, "https://borsen.dk/nyheder/1") is None


def test_full_listener_queue_drops_messages():
    async def _go():
        broadcaster = RealtimeBroadcaster(max_queue_size=1)
        queue = broadcaster.subscribe()
        first = broadcaster.publish_articles([make_article(1, embedding=[1.0])])
        second = broadcaster.publish(CHANNEL_ARTICLES, {"id": "x"})
        message = queue.get_nowait()
        broadcaster.unsubscribe(queue)
        return first, second, message, broadcaster.listener_count

    first, second, message, listeners = asyncio.run(_go())

    assert (first, second, listeners) == (1, 0, 0)
    assert message["channel"] == CHANNEL_ARTICLES
    assert "embedding" not in message["data"]
