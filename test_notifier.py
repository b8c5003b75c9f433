"""Subscriber fan-out, delivery marking and the supervisor report."""

from conftest import FakeEmailer, FakePusher, make_article, run
from wealth_radar.agents.notifier import (
    build_email_html,
    build_events_alert,
    build_subscriber_payloads,
    build_supervisor_report,
    notify_subscribers,
    select_notifiable_events,
    send_push_alerts,
    send_supervisor_report,
    struggling_sources,
)
from wealth_radar.pipeline.commit_and_notify import commit_events, commit_opportunities
from wealth_radar.schemas.events import SourceArticleRef, SynthesizedEvent
from wealth_radar.schemas.opportunities import Opportunity
from wealth_radar.schemas.pipeline import EnrichmentRecord, EventReportLine, RunStats, ScraperHealth
from wealth_radar.schemas.subscribers import Subscriber


def _event(key="sale-acme-2026-10-19", country="Denmark", score=80, headline="Holm family sells Acme"):
    return SynthesizedEvent(
        event_key=key,
        synthesized_headline=headline,
        synthesized_summary="The Holm family sold Acme <fast>.",
        country=country,
        source_articles=[SourceArticleRef(headline="Acme sold", link=f"https://borsen.dk/{key}", newspaper="Børsen")],
        highest_relevance_score=score,
    )


def _add_subscriber(store, email, countries, **fields):
    doc = {"first_name": "Ida", "countries": countries, **fields}
    store.update_one("subscribers", {"email": email}, {"$set": doc}, upsert=True)


def _notify(deps, events, opportunities=()):
    stats = RunStats()

    async def _go():
        return await notify_subscribers(events, list(opportunities), deps, stats)

    return run(_go), stats


# ════════════════════════════════════════════════════════════════════
# Selection
# ════════════════════════════════════════════════════════════════════

def test_only_unsent_events_above_threshold_are_notifiable():
    sent = _event(key="a", score=95)
    sent.emailed = True
    events = [_event(key="b", score=50), _event(key="c", score=49), sent]

    assert [e.event_key for e in select_notifiable_events(events, threshold=50)] == ["b"]


def test_subscribers_get_only_their_countries():
    norway = Subscriber(email="no@bank.no", countries=["Norway"])
    denmark = Subscriber(email="dk@bank.dk", countries=["denmark ", "Denmark"])
    inactive = Subscriber(email="off@bank.dk", countries=["Denmark"], is_active=False)
    opp = Opportunity(reach_out_to="Kari Nordmann", based_in="Norway", likely_mm_dollar_wealth=60)

    payloads = build_subscriber_payloads([norway, denmark, inactive], [_event()], [opp])

    by_email = {p.subscriber.email: p for p in payloads}
    assert set(by_email) == {"no@bank.no", "dk@bank.dk"}
    assert by_email["no@bank.no"].events == []
    assert by_email["no@bank.no"].opportunities == [opp]
    assert len(by_email["dk@bank.dk"].events) == 1


def test_subscriber_with_nothing_matching_gets_no_payload():
    norway = Subscriber(email="no@bank.no", countries=["Norway"])

    assert build_subscriber_payloads([norway], [_event(country="Denmark")], []) == []


def test_email_html_escapes_content():
    payloads = build_subscriber_payloads([Subscriber(email="dk@bank.dk", countries=["Denmark"])], [_event()], [])

    html = build_email_html(payloads[0])

    assert "&lt;fast&gt;" in html
    assert "<fast>" not in html


# ════════════════════════════════════════════════════════════════════
# Delivery
# ════════════════════════════════════════════════════════════════════

def test_norway_subscriber_receives_nothing_for_denmark_events(deps, store, emailer):
    _add_subscriber(store, "no@bank.no", ["Norway"])
    events = commit_events([_event()], store)

    _, stats = _notify(deps, events)

    assert emailer.sent == []
    assert stats.notifications_sent == 0
    assert store.find_one("events")["emailed"] is False


def test_successful_send_marks_events_and_opportunities(deps, store, emailer):
    _add_subscriber(store, "dk@bank.dk", ["Denmark"])
    events = commit_events([_event()], store)
    opps = commit_opportunities(
        [Opportunity(reach_out_to="Anders Holm", based_in="Denmark", likely_mm_dollar_wealth=90)],
        {}, events, store, RunStats(),
    )

    summary, stats = _notify(deps, events, opps)

    assert [m["to"] for m in emailer.sent] == ["dk@bank.dk"]
    assert summary.sent == 1
    assert stats.events_emailed == 1
    event_doc = store.find_one("events")
    assert event_doc["emailed"] is True
    assert event_doc["email_sent_at"]
    assert store.find_one("opportunities")["emailed"] is True


def test_skipped_send_is_counted_and_leaves_events_unsent(deps, store):
    deps._emailer = FakeEmailer(skipped=True)
    _add_subscriber(store, "dk@bank.dk", ["Denmark"])
    events = commit_events([_event()], store)

    summary, stats = _notify(deps, events)

    assert summary.skipped == 1
    assert stats.notifications_skipped == 1
    assert stats.events_emailed == 0
    assert store.find_one("events")["emailed"] is False


def test_failed_send_is_counted_and_leaves_events_unsent(deps, store):
    deps._emailer = FakeEmailer(success=False)
    _add_subscriber(store, "dk@bank.dk", ["Denmark"])
    events = commit_events([_event()], store)

    _, stats = _notify(deps, events)

    assert stats.notifications_failed == 1
    assert store.find_one("events")["emailed"] is False


def test_push_only_subscriber_is_reached_by_telegram(deps, store, emailer, pusher):
    _add_subscriber(
        store, "push@bank.dk", ["Denmark"],
        email_notifications_enabled=False, push_notifications_enabled=True, telegram_chat_id="4242",
    )
    events = commit_events([_event()], store)

    _, stats = _notify(deps, events)

    assert emailer.sent == []
    assert pusher.sent[0]["chat_id"] == "4242"
    assert "Holm family sells Acme" in pusher.sent[0]["text"]
    assert stats.events_emailed == 1


def test_push_failure_does_not_undo_email_delivery(deps, store, emailer):
    deps._pusher = FakePusher(success=False)
    _add_subscriber(
        store, "both@bank.dk", ["Denmark"],
        push_notifications_enabled=True, telegram_chat_id="7",
    )
    events = commit_events([_event()], store)

    summary, _ = _notify(deps, events)

    assert summary.sent == 1 and summary.failed == 1
    assert store.find_one("events")["emailed"] is True


# ════════════════════════════════════════════════════════════════════
# Push alerts
# ════════════════════════════════════════════════════════════════════

def _alert(deps, articles, events):
    stats = RunStats()

    async def _go():
        return await send_push_alerts(articles, events, deps, stats)

    return run(_go), stats


def test_push_alerts_go_to_every_push_subscriber_above_thresholds(deps, store, emailer, pusher):
    _add_subscriber(store, "se@bank.se", ["Sweden"], push_notifications_enabled=True, telegram_chat_id="11")
    _add_subscriber(store, "mail@bank.dk", ["Denmark"])
    _add_subscriber(
        store, "off@bank.dk", ["Denmark"],
        push_notifications_enabled=True, telegram_chat_id="12", is_active=False,
    )
    articles = [
        make_article(1, headline="Holm family sells Acme", relevance_article=50),
        make_article(2, headline="Rates unchanged", relevance_article=49),
    ]
    events = [_event(key="a", score=80), _event(key="b", score=70, headline="Lund IPO"), _event(key="c", score=49)]

    summary, stats = _alert(deps, articles, events)

    assert [m["chat_id"] for m in pusher.sent] == ["11", "11"]
    assert pusher.sent[0]["text"] == "New relevant article\nHolm family sells Acme\nhttps://borsen.dk/nyheder/1"
    assert pusher.sent[1]["text"] == 'New intelligence alert: 2 events\nHeadline: "Holm family sells Acme"'
    assert summary.sent == 2 and stats.push_alerts_sent == 2
    assert emailer.sent == []


def test_push_alerts_count_failures_and_skip_when_nothing_qualifies(deps, store):
    deps._pusher = FakePusher(success=False)
    _add_subscriber(store, "push@bank.dk", ["Denmark"], push_notifications_enabled=True, telegram_chat_id="7")

    summary, _ = _alert(deps, [make_article(1, relevance_article=10)], [_event(score=20)])
    assert summary.sent == summary.failed == 0

    summary, stats = _alert(deps, [], [_event()])
    assert summary.failed == 1 and stats.push_alerts_failed == 1


def test_single_event_alert_wording():
    assert build_events_alert([_event()]).startswith("New intelligence alert: 1 event\n")


# ════════════════════════════════════════════════════════════════════
# Supervisor report
# ════════════════════════════════════════════════════════════════════

def _report_stats() -> RunStats:
    return RunStats(
        headlines_scraped=12,
        scraper_health=[
            ScraperHealth(source="borsen", success=True, count=12),
            ScraperHealth(source="dn", success=False, count=0, error="timeout"),
        ],
        enrichment_outcomes=[
            EnrichmentRecord(headline="h", link="https://e24.no/x", newspaper="E24", outcome="dropped_fetch_failed"),
            EnrichmentRecord(headline="h", link="https://borsen.dk/y", newspaper="Børsen", outcome="enriched"),
        ],
        synthesized_events_for_report=[
            EventReportLine(synthesized_headline="Low", highest_relevance_score=55),
            EventReportLine(synthesized_headline="High", highest_relevance_score=95),
        ],
        errors=["Synthesis failed for x"],
    )


def test_struggling_sources():
    assert struggling_sources(_report_stats()) == ["dn", "E24"]


def test_report_lists_funnel_top_events_and_errors():
    report = build_supervisor_report(_report_stats(), "20261019_060000")

    assert report["subject"] == "Wealth Radar run 20261019_060000: with errors"
    text = report["text"]
    assert "Headlines scraped: 12" in text
    assert text.index("[95] High") < text.index("[55] Low")
    assert "Struggling sources: dn, E24" in text
    assert "Error: Synthesis failed for x" in text


def test_report_marks_failed_runs():
    stats = RunStats(pipeline_error="Pre-flight failed: no provider")

    report = build_supervisor_report(stats, "r1")

    assert report["subject"].endswith("FAILED")
    assert "Pipeline error: Pre-flight failed: no provider" in report["text"]


def test_report_is_emailed_to_supervisor_when_configured(deps, emailer, set_env):
    set_env(SUPERVISOR_EMAIL="boss@bank.dk")

    run(send_supervisor_report, _report_stats(), deps, "r1")

    assert [m["to"] for m in emailer.sent] == ["boss@bank.dk"]


def test_report_is_only_logged_without_supervisor(deps, emailer):
    run(send_supervisor_report, _report_stats(), deps, "r1")

    assert emailer.sent == []
