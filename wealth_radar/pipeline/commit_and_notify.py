"""
Stage 5: commit & notify.

COMMIT (unordered bulk upserts, no rollback):
  articles by link → events by event_key → opportunities by reach_out_to.
  Article and event failures raise CommitError and stop notifications.
  Opportunity failures are logged only.

The vector index is written before the article documents and outside any
transaction: a crash in between leaves index entries whose documents are
older than the index. Readers only use stored embeddings, so this is a
staleness window, not a correctness problem.

NOTIFY:
  realtime stream → push alerts → subscriber fan-out → delivered items
  marked emailed.
"""

import logging
from typing import Dict, List

from pydantic import ValidationError

from ..agents.notifier import notify_subscribers, select_relevant_articles, send_push_alerts
from ..config import get_settings
from ..database import UpdateOne
from ..errors import CommitError, StoreError
from ..schemas.events import SynthesizedEvent
from ..schemas.news import Article
from ..schemas.opportunities import Opportunity
from ..schemas.pipeline import RunPayload, StageResult
from .preflight import stage_banner

logger = logging.getLogger(__name__)


def index_relevant_articles(articles: List[Article], deps) -> int:
    """Re-embed relevant articles from headline + assessment and mirror them to the vector index."""
    relevant = select_relevant_articles(articles)
    if not relevant:
        return 0
    texts = [f"{a.headline}\n{a.assessment_article or ''}" for a in relevant]
    vectors = deps.embedding_tool.embed_batch(texts)
    for article, vector in zip(relevant, vectors):
        if vector and any(vector):
            article.embedding = vector

    index = deps.vector_index
    if index is None:
        return 0
    try:
        return index.upsert(
            [a.id for a in relevant],
            [a.embedding or [] for a in relevant],
            [{"link": a.link, "headline": a.headline, "newspaper": a.newspaper} for a in relevant],
        )
    except Exception as e:
        logger.warning(f"Vector index write failed, continuing commit: {e}")
        return 0


def commit_articles(articles: List[Article], store) -> None:
    display = get_settings().display_relevance_threshold
    ops = []
    for article in articles:
        doc = article.to_document(display)
        created_at = doc.pop("created_at")
        ops.append(UpdateOne(
            {"link": article.link},
            {"$set": doc, "$setOnInsert": {"created_at": created_at}},
        ))
    if not ops:
        return
    result = store.bulk_write("articles", ops, ordered=False)
    logger.info(f"💾 Articles: {result.upserted} inserted, {result.modified} updated, {len(result.errors)} failed")
    if not result.ok:
        raise CommitError(f"{len(result.errors)} article write(s) failed: {result.errors[0]}")


def commit_events(events: List[SynthesizedEvent], store) -> List[SynthesizedEvent]:
    """Upsert briefs and return them as stored (stored id and delivery state)."""
    if not events:
        return []
    ops = [
        UpdateOne(
            {"event_key": event.event_key},
            {
                "$set": event.brief_fields(),
                "$setOnInsert": {
                    "id": event.id,
                    "emailed": False,
                    "email_sent_at": None,
                    "created_at": event.created_at,
                },
            },
        )
        for event in events
    ]
    result = store.bulk_write("events", ops, ordered=False)
    logger.info(f"💾 Events: {result.upserted} inserted, {result.modified} updated, {len(result.errors)} failed")
    if not result.ok:
        raise CommitError(f"{len(result.errors)} event write(s) failed: {result.errors[0]}")

    keys = [e.event_key for e in events]
    try:
        docs = store.find("events", {"event_key": {"$in": keys}})
    except StoreError as e:
        raise CommitError(f"Could not reload committed events: {e}") from e
    return [SynthesizedEvent.model_validate(d) for d in docs]


def _event_id_by_link(events: List[SynthesizedEvent]) -> Dict[str, str]:
    mapping = {}
    for event in events:
        for ref in event.source_articles:
            mapping[ref.link] = event.id
    return mapping


def commit_opportunities(
    opportunities: List[Opportunity],
    article_map: Dict[str, Article],
    events: List[SynthesizedEvent],
    store,
    stats,
) -> List[Opportunity]:
    """Upsert opportunities; history is prepended and wealth only moves up. Failures are logged."""
    if not opportunities:
        return []
    event_ids = _event_id_by_link(events)
    ops = []
    for opp in opportunities:
        article = article_map.get(opp.source_article_id)
        source_event_id = event_ids.get(article.link) if article else None
        update = {
            "$set": {
                "contact_details": opp.contact_details.model_dump(),
                "based_in": opp.based_in,
                "source_article_id": opp.source_article_id,
                "source_event_id": source_event_id,
                "emailed": False,
            },
            "$max": {"likely_mm_dollar_wealth": opp.likely_mm_dollar_wealth},
            "$setOnInsert": {"id": opp.id, "created_at": opp.created_at},
        }
        if opp.why_contact:
            update["$push"] = {"why_contact": {"$each": list(opp.why_contact), "$position": 0}}
        ops.append(UpdateOne({"reach_out_to": opp.reach_out_to}, update))

    result = store.bulk_write("opportunities", ops, ordered=False)
    logger.info(
        f"💾 Opportunities: {result.upserted} inserted, {result.modified} updated, {len(result.errors)} failed"
    )
    for error in result.errors:
        stats.errors.append(f"Opportunity write failed: {error}")

    try:
        docs = store.find("opportunities", {"reach_out_to": {"$in": [o.reach_out_to for o in opportunities]}})
    except StoreError as e:
        logger.error(f"Could not reload committed opportunities: {e}")
        return []
    committed = []
    for doc in docs:
        try:
            committed.append(Opportunity.model_validate(doc))
        except ValidationError as e:
            logger.warning(f"Stored opportunity {doc.get('reach_out_to')} is malformed: {e}")
    return committed


async def run_commit_and_notify(payload: RunPayload, deps, ctx) -> StageResult:
    stage_banner("STAGE 5: COMMIT & NOTIFY")
    stats = payload.run_stats
    store = deps.store

    try:
        index_relevant_articles(payload.enriched_articles, deps)
        commit_articles(payload.assessed_candidates, store)
        payload.committed_events = commit_events(payload.synthesized_events_to_save, store)
    except CommitError as e:
        logger.critical(f"🚨 Commit failed, notifications skipped: {e}")
        stats.errors.append(f"CRITICAL: {e}")
        return StageResult(payload=payload, success=False)

    payload.committed_opportunities = commit_opportunities(
        payload.opportunities_to_save, payload.full_article_map, payload.committed_events, store, stats,
    )

    broadcaster = deps.broadcaster
    streamed_events = broadcaster.publish_events(payload.committed_events)
    streamed_articles = broadcaster.publish_articles(select_relevant_articles(payload.enriched_articles))
    logger.info(f"📡 Streamed {streamed_events} event(s) and {streamed_articles} article(s)")

    await send_push_alerts(payload.enriched_articles, payload.committed_events, deps, stats)
    await notify_subscribers(payload.committed_events, payload.committed_opportunities, deps, stats)
    return StageResult(payload=payload)
