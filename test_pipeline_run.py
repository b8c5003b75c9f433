"""End-to-end pipeline runs over fakes and in mock mode."""

import pytest

from conftest import LONG_PARAGRAPH, FakeEmailer, article_html, listing_html, run
from wealth_radar.agents.article_assessor import ARTICLE_SYSTEM_PROMPT
from wealth_radar.agents.deps import PipelineDeps
from wealth_radar.agents.headline_assessor import HEADLINE_SYSTEM_PROMPT
from wealth_radar.agents.realtime import CHANNEL_EVENTS, RealtimeBroadcaster
from wealth_radar.config import DEFAULT_SOURCES
from wealth_radar.errors import CommitError
from wealth_radar.news.sources import SourceRegistry
from wealth_radar.pipeline import commit_and_notify, runner
from wealth_radar.pipeline.context import RunContext
from wealth_radar.pipeline.runner import run_pipeline
from wealth_radar.tools.llm_service import LLMService
from wealth_radar.tools.provider_manager import ProviderManager

SOURCE_A = {"name": "source-a", "newspaper": "Alpha", "base_url": "https://a.example.com", "country": "Denmark"}
SOURCE_B = {"name": "source-b", "newspaper": "Beta", "base_url": "https://b.example.com", "country": "Denmark"}

ASSESSED = {
    "relevance_article": 80,
    "assessment_article": "A founder sold a company stake.",
    "topic": "Company sale",
    "key_individuals": [],
}


def _seed_sources(store, *sources):
    """Stored defaults are paused so only the given sources are active."""
    registry = SourceRegistry(store)
    registry.seed_defaults([{**s, "status": "paused"} for s in DEFAULT_SOURCES])
    registry.seed_defaults(list(sources))


def _b_links():
    return [f"https://b.example.com/n/{i}" for i in range(5)]


@pytest.fixture
def two_sources(store, fetcher, llm):
    """Source A lists nothing, source B lists five readable stories."""
    _seed_sources(store, SOURCE_A, SOURCE_B)
    fetcher.pages["https://a.example.com"] = "<html><body><p>Maintenance</p></body></html>"
    fetcher.pages["https://b.example.com"] = listing_html(
        [(f"Founder number {i} sells company stake", f"/n/{i}") for i in range(5)]
    )
    for link in _b_links():
        fetcher.pages[link] = article_html(LONG_PARAGRAPH, LONG_PARAGRAPH + " More.", LONG_PARAGRAPH + " End.")
    llm.responses[HEADLINE_SYSTEM_PROMPT] = lambda prompt: {"assessment": [
        {"relevance_headline": 60, "assessment_headline": "Possible founder sale."}
        for _ in range(prompt.count('"headline"'))
    ]}
    llm.responses[ARTICLE_SYSTEM_PROMPT] = ASSESSED


def _run(deps, **kwargs):
    async def _go():
        return await run_pipeline(deps=deps, **kwargs)
    return run(_go)


# ════════════════════════════════════════════════════════════════════
# Full runs
# ════════════════════════════════════════════════════════════════════

def test_empty_source_does_not_stop_the_run(deps, store, two_sources):
    outcome = _run(deps)
    stats = outcome.stats

    assert outcome.success and outcome.committed and not outcome.cancelled
    assert stats.headlines_scraped == 5
    assert stats.fresh_headlines_found == 5
    assert stats.headlines_assessed == 5
    assert stats.relevant_headlines == 5
    assert stats.articles_enriched == 5
    assert stats.relevant_articles == 5
    health = {h.source: h for h in stats.scraper_health}
    assert health["source-a"].success is False and health["source-b"].count == 5

    assert store.count("articles") == 5
    assert store.count("events") == stats.events_synthesized > 0
    assert store.count("opportunities") == stats.opportunities_found
    assert store.find_one("sources", {"name": "source-b"})["last_success_at"]


def test_second_standard_run_finds_nothing_new(deps, store, two_sources):
    _run(deps)

    outcome = _run(deps)

    assert outcome.success
    assert not outcome.committed
    assert outcome.stats.headlines_scraped == 5
    assert outcome.stats.fresh_headlines_found == 0
    assert store.count("articles") == 5


def test_refresh_run_reprocesses_without_duplicating(deps, store, two_sources):
    first = _run(deps)
    ids_before = {d["link"]: d["id"] for d in store.find("articles")}

    second = _run(deps, refresh_mode=True)

    assert second.stats.fresh_headlines_found == 5
    assert store.count("articles") == 5
    assert {d["link"]: d["id"] for d in store.find("articles")} == ids_before
    assert store.count("events") == first.stats.events_synthesized


def test_subscribers_are_notified_and_stream_receives_events(deps, store, emailer, two_sources):
    store.update_one("subscribers", {"email": "dk@bank.dk"}, {"$set": {"countries": ["Denmark"]}}, upsert=True)
    queue = deps.broadcaster.subscribe()

    outcome = _run(deps)

    assert [m["to"] for m in emailer.sent] == ["dk@bank.dk"]
    assert outcome.stats.events_emailed == outcome.stats.events_synthesized
    channels = []
    while not queue.empty():
        channels.append(queue.get_nowait()["channel"])
    assert channels.count(CHANNEL_EVENTS) == outcome.stats.events_synthesized


def test_push_subscriber_gets_article_and_event_alerts(deps, store, pusher, two_sources):
    store.update_one("subscribers", {"email": "push@bank.dk"}, {"$set": {
        "countries": ["Sweden"],
        "email_notifications_enabled": False,
        "push_notifications_enabled": True,
        "telegram_chat_id": "4242",
    }}, upsert=True)

    outcome = _run(deps)

    texts = [m["text"] for m in pusher.sent]
    assert all(m["chat_id"] == "4242" for m in pusher.sent)
    assert sum(t.startswith("New relevant article") for t in texts) == 5
    assert sum(t.startswith("New intelligence alert") for t in texts) == (1 if outcome.stats.events_synthesized else 0)
    assert outcome.stats.push_alerts_sent == len(texts)


def test_supervisor_report_is_sent_when_configured(deps, emailer, set_env, two_sources):
    set_env(SUPERVISOR_EMAIL="boss@bank.dk")

    outcome = _run(deps)

    report = emailer.sent[-1]
    assert report["to"] == "boss@bank.dk"
    assert outcome.run_id in report["subject"]
    assert "Headlines scraped: 5" in report["text"]


# ════════════════════════════════════════════════════════════════════
# Failure paths
# ════════════════════════════════════════════════════════════════════

def test_preflight_failure_aborts_run(deps, llm, emailer, fetcher, set_env):
    set_env(SUPERVISOR_EMAIL="boss@bank.dk")
    llm.available = False

    outcome = _run(deps)

    assert not outcome.success
    assert "No LLM provider" in outcome.stats.pipeline_error
    assert fetcher.fetched == []
    assert emailer.sent == []


def test_wrong_sanity_answer_fails_preflight(deps, llm):
    llm.sanity_answer = "Rome."

    outcome = _run(deps)

    assert not outcome.success
    assert "unexpected answer" in outcome.stats.pipeline_error


def test_no_active_sources_fails_preflight(deps, store):
    _seed_sources(store)

    outcome = _run(deps)

    assert not outcome.success
    assert "No active news sources" in outcome.stats.pipeline_error


def test_stage_crash_is_recorded_and_run_still_commits(deps, store, two_sources, monkeypatch):
    async def _boom(payload, deps, ctx):
        raise RuntimeError("clustering exploded")

    monkeypatch.setattr(runner, "run_cluster_and_synthesize", _boom)

    outcome = _run(deps)

    assert outcome.success and outcome.committed
    assert any("Cluster & synthesize failed: clustering exploded" in e for e in outcome.stats.errors)
    assert store.count("articles") == 5
    assert store.count("events") == 0


def test_commit_failure_skips_notifications(deps, store, emailer, pusher, two_sources, monkeypatch):
    store.update_one("subscribers", {"email": "dk@bank.dk"}, {"$set": {"countries": ["Denmark"]}}, upsert=True)
    store.update_one("subscribers", {"email": "push@bank.dk"}, {"$set": {
        "countries": ["Denmark"], "push_notifications_enabled": True, "telegram_chat_id": "7",
    }}, upsert=True)

    def _fail(articles, store):
        raise CommitError("disk full")

    monkeypatch.setattr(commit_and_notify, "commit_articles", _fail)

    outcome = _run(deps)

    assert outcome.success
    assert not outcome.committed
    assert any(e.startswith("CRITICAL") for e in outcome.stats.errors)
    assert emailer.sent == []
    assert pusher.sent == []


def test_cancelled_run_stops_before_the_next_stage(deps, store, two_sources):
    async def _go():
        ctx = RunContext()
        ctx.cancel()
        return await run_pipeline(deps=deps, ctx=ctx)

    outcome = run(_go)

    assert outcome.cancelled
    assert not outcome.committed
    assert store.count("articles") == 0


# ════════════════════════════════════════════════════════════════════
# Mock mode
# ════════════════════════════════════════════════════════════════════

def test_mock_mode_runs_offline_end_to_end(store, embedder, wikipedia):
    LLMService.clear_cache()
    ProviderManager.reset_cooldowns()
    emailer = FakeEmailer(skipped=True)
    deps = PipelineDeps.create(
        mock_mode=True,
        store=store,
        embedding_tool=embedder,
        wikipedia_tool=wikipedia,
        emailer=emailer,
        broadcaster=RealtimeBroadcaster(),
    )

    outcome = _run(deps, mock_mode=True)

    assert outcome.success and outcome.committed
    assert outcome.stats.headlines_scraped > 0
    assert outcome.stats.relevant_headlines > 0
    assert store.count("articles") == outcome.stats.fresh_headlines_found
    assert deps.page_fetcher is None
    LLMService.clear_cache()
