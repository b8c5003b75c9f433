"""
Notification fan-out and the supervisor report.

Subscribers receive only the events (by country) and opportunities (by
based_in) that match their countries. Delivery state is written back only
after a successful send. Only events and opportunities committed in the
current run are considered: an item whose send was skipped (non-production)
or failed stays unflagged and is offered again only if a later run commits
it again.

Push alerts are separate from the digest: every push subscriber gets one
message per relevant article and one for the batch of notifiable events.
"""

import html as html_mod
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from ..config import get_settings
from ..schemas.events import SynthesizedEvent
from ..schemas.news import Article, utcnow
from ..schemas.opportunities import Opportunity
from ..schemas.pipeline import RunStats
from ..schemas.subscribers import Subscriber

logger = logging.getLogger(__name__)

ACCENT = "#1F4E5F"


@dataclass
class SubscriberPayload:
    subscriber: Subscriber
    events: List[SynthesizedEvent] = field(default_factory=list)
    opportunities: List[Opportunity] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.events and not self.opportunities


@dataclass
class DispatchSummary:
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    delivered_event_ids: Set[str] = field(default_factory=set)
    delivered_opportunity_ids: Set[str] = field(default_factory=set)


def _country_key(country: str) -> str:
    return (country or "").strip().casefold()


def select_relevant_articles(articles: Iterable[Article], threshold: Optional[int] = None) -> List[Article]:
    threshold = get_settings().articles_relevance_threshold if threshold is None else threshold
    return [a for a in articles if (a.relevance_article or 0) >= threshold]


def select_notifiable_events(events: Iterable[SynthesizedEvent], threshold: Optional[int] = None) -> List[SynthesizedEvent]:
    threshold = get_settings().event_notification_threshold if threshold is None else threshold
    return [e for e in events if e.highest_relevance_score >= threshold and not e.emailed]


def build_subscriber_payloads(
    subscribers: List[Subscriber],
    events: List[SynthesizedEvent],
    opportunities: List[Opportunity],
) -> List[SubscriberPayload]:
    """Per-subscriber content. Subscribers with nothing in their countries are left out."""
    events_by_country: Dict[str, List[SynthesizedEvent]] = {}
    for event in events:
        events_by_country.setdefault(_country_key(event.country), []).append(event)
    opps_by_country: Dict[str, List[Opportunity]] = {}
    for opp in opportunities:
        opps_by_country.setdefault(_country_key(opp.based_in), []).append(opp)

    payloads = []
    for subscriber in subscribers:
        if not subscriber.is_active:
            continue
        payload = SubscriberPayload(subscriber=subscriber)
        for country in dict.fromkeys(_country_key(c) for c in subscriber.countries):
            if not country:
                continue
            payload.events.extend(events_by_country.get(country, []))
            payload.opportunities.extend(opps_by_country.get(country, []))
        if payload.is_empty:
            logger.debug(f"Nothing for {subscriber.email} in {subscriber.countries}")
            continue
        payload.events.sort(key=lambda e: e.highest_relevance_score, reverse=True)
        payloads.append(payload)
    return payloads


# ── Rendering ────────────────────────────────────────────────────────


def build_email_subject(payload: SubscriberPayload) -> str:
    if payload.events:
        lead = payload.events[0].synthesized_headline
        extra = len(payload.events) - 1
        return f"Wealth events: {lead[:80]}" + (f" (+{extra} more)" if extra else "")
    return f"{len(payload.opportunities)} new wealth opportunit{'y' if len(payload.opportunities) == 1 else 'ies'}"


def _event_html(event: SynthesizedEvent) -> str:
    sources = " &middot; ".join(
        f"<a href='{html_mod.escape(s.link)}' style='color:{ACCENT}'>{html_mod.escape(s.newspaper or 'source')}</a>"
        for s in event.source_articles
    )
    people = ", ".join(
        html_mod.escape(p.name + (f" ({p.role_in_event})" if p.role_in_event else ""))
        for p in event.key_individuals
    )
    return (
        f"<div style='padding:16px 0;border-bottom:1px solid #E5E3DA'>"
        f"<div style='font-size:11px;color:#8A8878'>{html_mod.escape(event.country)} &middot; "
        f"score {event.highest_relevance_score}</div>"
        f"<h3 style='margin:4px 0 8px;font-size:16px;color:#2C2B23'>{html_mod.escape(event.synthesized_headline)}</h3>"
        f"<p style='margin:0 0 8px;line-height:1.6;font-size:14px;color:#2C2B23'>"
        f"{html_mod.escape(event.synthesized_summary)}</p>"
        + (f"<p style='margin:0 0 6px;font-size:12px;color:#55544A'><strong>Key individuals:</strong> {people}</p>" if people else "")
        + f"<p style='margin:0;font-size:12px'>{sources}</p></div>"
    )


def _opportunity_html(opp: Opportunity) -> str:
    details = " &middot; ".join(html_mod.escape(d) for d in (
        opp.contact_details.role, opp.contact_details.company, opp.contact_details.email,
    ) if d)
    return (
        f"<div style='padding:12px 0;border-bottom:1px solid #E5E3DA'>"
        f"<strong style='font-size:14px'>{html_mod.escape(opp.reach_out_to)}</strong>"
        f" <span style='font-size:12px;color:#8A8878'>{html_mod.escape(opp.based_in)} &middot; "
        f"~${opp.likely_mm_dollar_wealth:,.0f}M</span>"
        + (f"<div style='font-size:12px;color:#55544A'>{details}</div>" if details else "")
        + f"<div style='font-size:13px;margin-top:4px'>{html_mod.escape(opp.latest_reason)}</div></div>"
    )


def _wrap_email(title: str, greeting: str, sections: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1.0"></head>
<body style="margin:0;padding:0;background:#F0EFE8;font-family:'Segoe UI',Roboto,'Helvetica Neue',Arial,sans-serif">
<div style="height:28px"></div>
<div style="max-width:600px;margin:0 auto;background:#FFFFFF;border-radius:12px;overflow:hidden;padding:28px 36px">
  <h2 style="margin:0 0 6px;color:{ACCENT};font-size:20px">{html_mod.escape(title)}</h2>
  <p style="margin:0 0 18px;font-size:13px;color:#55544A">{html_mod.escape(greeting)}</p>
  {sections}
</div>
<div style="height:28px"></div>
</body>
</html>"""


def build_email_html(payload: SubscriberPayload) -> str:
    name = payload.subscriber.first_name or "there"
    sections = ""
    if payload.events:
        sections += f"<h4 style='margin:18px 0 0;color:{ACCENT}'>Wealth events</h4>"
        sections += "".join(_event_html(e) for e in payload.events)
    if payload.opportunities:
        sections += f"<h4 style='margin:18px 0 0;color:{ACCENT}'>Opportunities</h4>"
        sections += "".join(_opportunity_html(o) for o in payload.opportunities)
    return _wrap_email("Wealth Radar", f"Hi {name}, here is today's briefing.", sections)


def build_push_text(payload: SubscriberPayload) -> str:
    lines = []
    for event in payload.events:
        lines.append(f"• {event.synthesized_headline} [{event.country}, {event.highest_relevance_score}]")
        if event.source_articles:
            lines.append(f"  {event.source_articles[0].link}")
    for opp in payload.opportunities:
        lines.append(f"• Opportunity: {opp.reach_out_to} ({opp.based_in}, ~${opp.likely_mm_dollar_wealth:,.0f}M)")
    return "Wealth Radar\n" + "\n".join(lines)


# ── Dispatch ─────────────────────────────────────────────────────────


def _record(summary: DispatchSummary, success: bool, skipped: bool, payload: SubscriberPayload) -> None:
    if skipped:
        summary.skipped += 1
    elif success:
        summary.sent += 1
        summary.delivered_event_ids.update(e.id for e in payload.events)
        summary.delivered_opportunity_ids.update(o.id for o in payload.opportunities)
    else:
        summary.failed += 1


async def dispatch_notifications(payloads: List[SubscriberPayload], deps) -> DispatchSummary:
    """Send email and/or push per subscriber preferences."""
    summary = DispatchSummary()
    for payload in payloads:
        subscriber = payload.subscriber
        if subscriber.email_notifications_enabled:
            result = await deps.emailer.send_email(
                to_email=subscriber.email,
                subject=build_email_subject(payload),
                html_content=build_email_html(payload),
                to_name=subscriber.first_name,
                text_content=build_push_text(payload),
            )
            _record(summary, result.success, result.skipped, payload)
        if subscriber.can_receive_push:
            result = await deps.pusher.send_message(subscriber.telegram_chat_id, build_push_text(payload))
            _record(summary, result.success, result.skipped, payload)
    return summary


def mark_delivered(store, summary: DispatchSummary) -> int:
    """Flag delivered events and opportunities. Returns the number of events marked."""
    now = utcnow()
    marked = 0
    if summary.delivered_event_ids:
        marked = store.update_many(
            "events",
            {"id": {"$in": sorted(summary.delivered_event_ids)}},
            {"$set": {"emailed": True, "email_sent_at": now}},
        )
    if summary.delivered_opportunity_ids:
        store.update_many(
            "opportunities",
            {"id": {"$in": sorted(summary.delivered_opportunity_ids)}},
            {"$set": {"emailed": True, "emailed_at": now}},
        )
    return marked


def load_subscribers(store) -> List[Subscriber]:
    subscribers = []
    for doc in store.find("subscribers"):
        try:
            subscribers.append(Subscriber.model_validate(doc))
        except ValueError as e:
            logger.warning(f"Skipping malformed subscriber {doc.get('email')}: {e}")
    return subscribers


async def notify_subscribers(
    events: List[SynthesizedEvent],
    opportunities: List[Opportunity],
    deps,
    stats: RunStats,
) -> DispatchSummary:
    """Select, build, send, mark. Updates the notification counters on stats."""
    notifiable = select_notifiable_events(events)
    subscribers = load_subscribers(deps.store)

    payloads = build_subscriber_payloads(subscribers, notifiable, opportunities)
    logger.info(
        f"📬 {len(notifiable)} notifiable event(s), {len(opportunities)} opportunit(ies), "
        f"{len(payloads)}/{len(subscribers)} subscriber(s) with matching content"
    )
    summary = await dispatch_notifications(payloads, deps)
    stats.notifications_sent += summary.sent
    stats.notifications_skipped += summary.skipped
    stats.notifications_failed += summary.failed
    stats.events_emailed += mark_delivered(deps.store, summary)
    return summary


# ── Push alerts ──────────────────────────────────────────────────────


def build_article_alert(article: Article) -> str:
    return f"New relevant article\n{article.headline}\n{article.link}"


def build_events_alert(events: List[SynthesizedEvent]) -> str:
    noun = "event" if len(events) == 1 else "events"
    return f'New intelligence alert: {len(events)} {noun}\nHeadline: "{events[0].synthesized_headline}"'


async def send_push_alerts(
    articles: List[Article],
    events: List[SynthesizedEvent],
    deps,
    stats: RunStats,
) -> DispatchSummary:
    """Broadcast alerts to every push subscriber, regardless of country.

    One message per article at or above the article relevance threshold and
    one for all notifiable events. Delivery state is not touched.
    """
    messages = [build_article_alert(a) for a in select_relevant_articles(articles)]
    notifiable = select_notifiable_events(events)
    if notifiable:
        messages.append(build_events_alert(notifiable))
    summary = DispatchSummary()
    if not messages:
        return summary

    recipients = [s for s in load_subscribers(deps.store) if s.is_active and s.can_receive_push]
    for subscriber in recipients:
        for text in messages:
            result = await deps.pusher.send_message(subscriber.telegram_chat_id, text)
            if result.skipped:
                summary.skipped += 1
            elif result.success:
                summary.sent += 1
            else:
                summary.failed += 1
    logger.info(
        f"🔔 Push alerts: {len(messages)} message(s) to {len(recipients)} subscriber(s), "
        f"{summary.sent} sent, {summary.skipped} skipped, {summary.failed} failed"
    )
    stats.push_alerts_sent += summary.sent
    stats.push_alerts_failed += summary.failed
    return summary


# ── Supervisor report ────────────────────────────────────────────────

_FUNNEL_FIELDS = [
    ("Headlines scraped", "headlines_scraped"),
    ("Fresh headlines", "fresh_headlines_found"),
    ("Headlines assessed", "headlines_assessed"),
    ("Relevant headlines", "relevant_headlines"),
    ("Articles enriched", "articles_enriched"),
    ("Relevant articles", "relevant_articles"),
    ("Events clustered", "events_clustered"),
    ("Events synthesized", "events_synthesized"),
    ("Events emailed", "events_emailed"),
    ("Opportunities found", "opportunities_found"),
    ("Notifications sent", "notifications_sent"),
    ("Notifications skipped", "notifications_skipped"),
    ("Notifications failed", "notifications_failed"),
    ("Push alerts sent", "push_alerts_sent"),
    ("Push alerts failed", "push_alerts_failed"),
]


def struggling_sources(stats: RunStats) -> List[str]:
    """Sources with no headlines this run, or with articles dropped because the body could not be fetched."""
    names = [h.source for h in stats.scraper_health if h.count == 0]
    for record in stats.enrichment_outcomes:
        if record.outcome.startswith("dropped") and record.newspaper and record.newspaper not in names:
            names.append(record.newspaper)
    return names


def build_supervisor_report(stats: RunStats, run_id: str) -> Dict[str, str]:
    """{'subject', 'html', 'text'} for the end-of-run report."""
    top_events = sorted(
        stats.synthesized_events_for_report, key=lambda e: e.highest_relevance_score, reverse=True,
    )[:5]
    struggling = struggling_sources(stats)
    status = "FAILED" if stats.pipeline_error else ("with errors" if stats.errors else "OK")

    text_lines = [f"Run {run_id}: {status}"]
    text_lines += [f"{label}: {getattr(stats, attr)}" for label, attr in _FUNNEL_FIELDS]
    text_lines.append("Top events:")
    text_lines += [f"  [{e.highest_relevance_score}] {e.synthesized_headline}" for e in top_events] or ["  none"]
    text_lines.append(f"Struggling sources: {', '.join(struggling) or 'none'}")
    if stats.pipeline_error:
        text_lines.append(f"Pipeline error: {stats.pipeline_error}")
    text_lines += [f"Error: {err}" for err in stats.errors]

    rows = "".join(
        f"<tr><td style='padding:4px 12px 4px 0'>{label}</td><td><strong>{getattr(stats, attr)}</strong></td></tr>"
        for label, attr in _FUNNEL_FIELDS
    )
    events_html = "".join(
        f"<li>[{e.highest_relevance_score}] {html_mod.escape(e.synthesized_headline)}</li>" for e in top_events
    ) or "<li>none</li>"
    errors_html = "".join(
        f"<li style='color:#A83226'>{html_mod.escape(err)}</li>"
        for err in ([stats.pipeline_error] if stats.pipeline_error else []) + stats.errors
    ) or "<li>none</li>"
    sections = (
        f"<table style='font-size:13px'>{rows}</table>"
        f"<h4 style='color:{ACCENT}'>Top events</h4><ul>{events_html}</ul>"
        f"<h4 style='color:{ACCENT}'>Struggling sources</h4>"
        f"<p style='font-size:13px'>{html_mod.escape(', '.join(struggling) or 'none')}</p>"
        f"<h4 style='color:{ACCENT}'>Errors</h4><ul>{errors_html}</ul>"
    )
    return {
        "subject": f"Wealth Radar run {run_id}: {status}",
        "html": _wrap_email("Supervisor report", f"Run {run_id}", sections),
        "text": "\n".join(text_lines),
    }


async def send_supervisor_report(stats: RunStats, deps, run_id: str) -> None:
    report = build_supervisor_report(stats, run_id)
    logger.info("📊 Run summary\n" + report["text"])
    recipient = get_settings().supervisor_email
    if not recipient:
        logger.warning("SUPERVISOR_EMAIL not configured, report only logged")
        return
    result = await deps.emailer.send_email(
        to_email=recipient,
        subject=report["subject"],
        html_content=report["html"],
        text_content=report["text"],
    )
    if not result.success and not result.skipped:
        logger.error(f"Supervisor report could not be sent: {result.error}")
