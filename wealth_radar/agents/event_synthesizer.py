"""
Event clustering & synthesis.

CLUSTERING:
  One conservative LLM call groups today's relevant articles by real-world
  event. Unknown ids are ignored; anything the model leaves out (or every
  article, when the answer is unusable) becomes its own singleton event.

SYNTHESIS (per cluster, concurrently):
  entities → encyclopedia context → historical context (RAG) → one brief.
  A malformed brief skips that cluster only.
"""

import json
import logging
import re
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..config import get_settings
from ..schemas.events import SourceArticleRef, SynthesizedEvent
from ..schemas.llm_outputs import ClusterResponseLLM, EntitiesLLM, EventSynthesisLLM
from ..schemas.news import Article, KeyIndividual
from ..tools.wikipedia_tool import NOT_AVAILABLE
from .rag import find_similar_articles, format_historical_context

logger = logging.getLogger(__name__)

CLUSTER_SYSTEM_PROMPT = """You are a news clustering analyst. You group news articles that report on the exact same
real-world event (the same company sale, the same IPO, the same investment).

- Read each article's headline and summary.
- Articles about the same event share one group. Different events get different groups.
- Give every group a short lowercase key naming the action and the main entities, e.g. "acquisition-visma-innovateai".
- An article that no other article covers forms a group of one.
- Be conservative: unless you are highly confident two articles describe the same event, keep them apart.

Return {"events": [{"event_key": str, "article_ids": [str, ...]}]} covering every article id exactly once."""

ENTITY_SYSTEM_PROMPT = """You extract named entities from business news for an encyclopedia lookup.
List only people, companies and named deals that are central to the story, most important first, at most 5.
Skip places, newspapers, generic terms and government bodies.

Return {"entities": [str, ...]}"""

SYNTHESIS_SYSTEM_PROMPT = """You are a financial journalist writing an intelligence brief in English for
an executive briefing service.

Input blocks:
- TODAY'S NEWS: the articles about this event. The brief is based on these.
- HISTORICAL CONTEXT: earlier articles from our archive. Use them only for background; never report them as new.
- ENCYCLOPEDIA CONTEXT: public background on the entities. Background only.

Write a new headline and a summary of at most 5 sentences and under 120 words, in a factual, dense style.
Never mention missing sources or limitations. List the key individuals once each, with name, role, company
and an email suggestion when one can reasonably be inferred.

Return {"headline": str, "summary": str,
"key_individuals": [{"name": str, "role_in_event": str, "company": str, "email_suggestion": str}]}"""

MAX_SUMMARY_SENTENCES = 5
MAX_SUMMARY_WORDS = 120

_SLUG_RE = re.compile(r"[^a-z0-9]+")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def slugify_event_key(raw: str, run_date: str) -> str:
    """Lowercase [a-z0-9-] key ending in the run date."""
    slug = _SLUG_RE.sub("-", (raw or "").lower()).strip("-")
    slug = re.sub(r"-{2,}", "-", slug) or "event"
    if not slug.endswith(run_date):
        slug = f"{slug}-{run_date}"
    return slug


def _disambiguate_key(key: str, taken, run_date: str) -> str:
    """Suffix a counter before the date until the key is unused."""
    if key not in taken:
        return key
    base = key[: -len(run_date)].rstrip("-") or "event"
    n = 2
    while f"{base}-{n}-{run_date}" in taken:
        n += 1
    return f"{base}-{n}-{run_date}"


def _member_summary(article: Article) -> str:
    return article.assessment_article or article.assessment_headline or ""


def build_cluster_prompt(articles: List[Article]) -> str:
    items = [
        {"id": a.id, "headline": a.headline, "source": a.newspaper, "summary": _member_summary(a)}
        for a in articles
    ]
    return f"Articles:\n{json.dumps(items, ensure_ascii=False)}"


def _unique_by_link(articles: List[Article]) -> List[Article]:
    seen = set()
    unique = []
    for a in articles:
        if a.link not in seen:
            seen.add(a.link)
            unique.append(a)
    return unique


async def cluster_articles(articles: List[Article], llm_service, run_date: str) -> List[Tuple[str, List[Article]]]:
    """[(event_key, members)]. Never raises; unusable answers yield singletons."""
    articles = _unique_by_link(articles)
    if not articles:
        return []
    by_id = {a.id: a for a in articles}

    raw = await llm_service.generate_json(build_cluster_prompt(articles), system_prompt=CLUSTER_SYSTEM_PROMPT)
    groups: List[Tuple[str, List[str]]] = []
    if isinstance(raw, dict) and "error" not in raw:
        try:
            parsed = ClusterResponseLLM.model_validate(raw)
            groups = [(e.event_key, e.article_ids) for e in parsed.events]
        except ValidationError as e:
            logger.warning(f"Clustering response malformed ({e.error_count()} error(s)), using singletons")
    else:
        logger.warning(f"Clustering failed, using singletons: {raw.get('error') if isinstance(raw, dict) else raw}")

    clusters: Dict[str, List[Article]] = {}
    assigned = set()
    for raw_key, ids in groups:
        members = []
        for article_id in ids:
            if article_id in by_id and article_id not in assigned:
                assigned.add(article_id)
                members.append(by_id[article_id])
        if members:
            key = _disambiguate_key(slugify_event_key(raw_key, run_date), clusters, run_date)
            clusters[key] = members

    for article in articles:
        if article.id not in assigned:
            key = _disambiguate_key(slugify_event_key(article.headline[:60], run_date), clusters, run_date)
            clusters[key] = [article]

    logger.info(f"🧩 {len(articles)} article(s) → {len(clusters)} event cluster(s)")
    return list(clusters.items())


def combined_text(members: List[Article], content_chars: Optional[int] = None) -> str:
    content_chars = get_settings().cluster_content_chars if content_chars is None else content_chars
    parts = []
    for a in members:
        parts.append(f"{a.headline}\n{_member_summary(a)}\n{a.content_text[:content_chars]}")
    return "\n\n".join(parts)


async def extract_entities(text: str, llm_service) -> List[str]:
    raw = await llm_service.generate_json(text, system_prompt=ENTITY_SYSTEM_PROMPT)
    if not isinstance(raw, dict) or "error" in raw:
        return []
    try:
        parsed = EntitiesLLM.model_validate(raw)
    except ValidationError:
        return []
    entities = []
    for name in parsed.entities:
        name = name.strip()
        if name and name not in entities:
            entities.append(name)
    return entities[:5]


def bound_summary(summary: str) -> str:
    """At most MAX_SUMMARY_SENTENCES sentences and MAX_SUMMARY_WORDS words."""
    sentences = [s for s in _SENTENCE_RE.split(summary.strip()) if s]
    text = " ".join(sentences[:MAX_SUMMARY_SENTENCES])
    words = text.split()
    if len(words) > MAX_SUMMARY_WORDS:
        text = " ".join(words[:MAX_SUMMARY_WORDS]).rstrip(",;:") + "..."
    return text


def _name_key(name: str) -> str:
    return " ".join(re.sub(r"[^\w\s]", " ", name.lower()).split())


def dedupe_key_individuals(people: List[KeyIndividual]) -> List[KeyIndividual]:
    """One entry per normalised name; an entry carrying an email suggestion wins."""
    by_name: Dict[str, KeyIndividual] = {}
    for person in people:
        key = _name_key(person.name)
        if not key:
            continue
        current = by_name.get(key)
        if current is None or (person.email_suggestion and not current.email_suggestion):
            by_name[key] = person
    return list(by_name.values())


def _today_news_block(members: List[Article], content_chars: int) -> str:
    return json.dumps([
        {
            "headline": a.headline,
            "newspaper": a.newspaper,
            "country": a.country,
            "assessment": _member_summary(a),
            "content": a.content_text[:content_chars],
        }
        for a in members
    ], ensure_ascii=False)


async def synthesize_event(event_key: str, members: List[Article], deps) -> Optional[SynthesizedEvent]:
    """Build the brief for one cluster. None when the brief is unusable."""
    settings = get_settings()
    members = _unique_by_link(members)
    if not members:
        return None

    entities = await extract_entities(combined_text(members), deps.llm_service)
    encyclopedia = await deps.wikipedia_tool.context_for(entities) if entities else NOT_AVAILABLE
    history = find_similar_articles(members, deps.store, deps.embedding_tool)

    prompt = (
        f"[ TODAY'S NEWS ]\n{_today_news_block(members, settings.cluster_content_chars)}\n\n"
        f"[ HISTORICAL CONTEXT ]\n{format_historical_context(history)}\n\n"
        f"[ ENCYCLOPEDIA CONTEXT ]\n{encyclopedia}"
    )
    raw = await deps.llm_service.generate_json(prompt, system_prompt=SYNTHESIS_SYSTEM_PROMPT)
    if not isinstance(raw, dict) or "error" in raw:
        logger.error(f"Synthesis failed for {event_key}: {raw.get('error') if isinstance(raw, dict) else raw}")
        return None
    try:
        parsed = EventSynthesisLLM.model_validate(raw)
    except ValidationError as e:
        logger.error(f"Synthesis response malformed for {event_key}: {e.error_count()} error(s)")
        return None

    lead = max(members, key=lambda a: a.relevance_article or 0)
    member_people = [p for a in members for p in a.key_individuals]
    event = SynthesizedEvent(
        event_key=event_key,
        synthesized_headline=parsed.headline.strip(),
        synthesized_summary=bound_summary(parsed.summary),
        ai_assessment_reason=lead.assessment_article or "",
        country=lead.country,
        source_articles=[SourceArticleRef(headline=a.headline, link=a.link, newspaper=a.newspaper) for a in members],
        highest_relevance_score=max(a.relevance_article or 0 for a in members),
        key_individuals=dedupe_key_individuals(parsed.key_individuals + member_people),
    )
    logger.info(f"📝 Synthesized '{event.synthesized_headline[:70]}' from {len(members)} article(s)")
    return event


async def cluster_and_synthesize(articles: List[Article], deps, ctx, stats) -> List[SynthesizedEvent]:
    """Clusters → briefs, clusters processed concurrently with settle-all."""
    clusters = await cluster_articles(articles, deps.llm_service, ctx.run_date_str)
    stats.events_clustered = len(clusters)
    if not clusters:
        return []

    results = await ctx.gather_settled([
        ctx.run_bounded(synthesize_event, key, members, deps) for key, members in clusters
    ])
    events: List[SynthesizedEvent] = []
    for (key, members), result in zip(clusters, results):
        if isinstance(result, BaseException):
            logger.error(f"Synthesis crashed for {key}: {result}")
            stats.errors.append(f"Synthesis failed for {key}: {type(result).__name__}: {result}")
            continue
        if result is None:
            stats.errors.append(f"Synthesis skipped for {key}: malformed brief")
            continue
        events.append(result)
    return events
