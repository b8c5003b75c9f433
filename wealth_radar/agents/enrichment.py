"""
Enrichment & salvage engine — one explicit state machine per relevant headline.

    START ──content ok──▶ FETCHED ──assessed──▶ DONE
      │
      └─content missing─▶ FETCH_FAILED ──score < high signal──▶ DROPPED
                              │
                              └─score ≥ high signal─▶ VERIFICATION
                                    │                     │
                        alternate found ▶ FETCHED   exhausted ▶ SALVAGE
                                                              │
                                               salvaged ▶ DONE, failed ▶ DROPPED

`next_state` is pure; `enrich_article` performs the I/O that produces each
event. Every article ends with an EnrichmentRecord holding its full path.
"""

import logging
from typing import List, Optional, Tuple

from ..config import SOURCE_BLACKLIST, get_settings
from ..news.scraper import fetch_article_paragraphs
from ..schemas.base import EnrichmentEvent, EnrichmentState
from ..schemas.news import Article
from ..schemas.pipeline import EnrichmentRecord
from ..tools.domain_utils import extract_clean_domain, is_excluded_domain
from .article_assessor import assess_article, salvage_from_headline

logger = logging.getLogger(__name__)

S = EnrichmentState
E = EnrichmentEvent

TERMINAL_STATES = {S.DONE, S.DROPPED}

# Outcome labels recorded on the article and in the run report
OUTCOME_ENRICHED = "enriched"
OUTCOME_VERIFIED = "enriched_via_alternate"
OUTCOME_SALVAGED = "salvaged"
OUTCOME_DROPPED_FETCH = "dropped_fetch_failed"
OUTCOME_DROPPED_SALVAGE = "dropped_salvage_failed"

_TRANSITIONS = {
    (S.START, E.CONTENT_OK): S.FETCHED,
    (S.START, E.CONTENT_MISSING): S.FETCH_FAILED,
    (S.FETCHED, E.ASSESSED): S.DONE,
    (S.VERIFICATION, E.ALTERNATE_FOUND): S.FETCHED,
    (S.VERIFICATION, E.ALTERNATES_EXHAUSTED): S.SALVAGE,
    (S.SALVAGE, E.SALVAGED): S.DONE,
    (S.SALVAGE, E.SALVAGE_FAILED): S.DROPPED,
}


def next_state(
    state: EnrichmentState,
    event: Optional[EnrichmentEvent],
    headline_score: int,
    high_signal_threshold: int,
) -> EnrichmentState:
    """Pure transition function. Raises ValueError for an undefined transition."""
    if state in TERMINAL_STATES:
        raise ValueError(f"{state.value} is terminal")
    if state == S.FETCH_FAILED:
        # Only the headline score decides whether a missing body is worth chasing
        return S.VERIFICATION if headline_score >= high_signal_threshold else S.DROPPED

    target = _TRANSITIONS.get((state, event))
    if target is None:
        raise ValueError(f"No enrichment transition from {state.value} on {getattr(event, 'value', event)}")
    return target


def _has_enough_content(paragraphs: List[str], min_chars: int) -> bool:
    return len("\n".join(paragraphs).strip()) >= min_chars


async def _fetch_original(article: Article, deps, ctx) -> List[str]:
    source = ctx.source_cache.get(article.source_name) if ctx is not None else None
    selector = source.article_selector if source else None
    return await fetch_article_paragraphs(article.link, deps.page_fetcher, selector)


async def _verify_elsewhere(article: Article, deps, min_chars: int) -> Tuple[Optional[str], List[str]]:
    """Search for the same story on another outlet. (alternate link, paragraphs) or (None, [])."""
    settings = get_settings()
    original_domain = extract_clean_domain(article.link) or ""
    excluded = sorted(SOURCE_BLACKLIST | ({original_domain} if original_domain else set()))

    results = await deps.search_tool.search_snippets(
        article.headline,
        max_results=settings.verification_max_alternates,
        topic="news",
        exclude_domains=excluded,
    )
    alternates = [
        r["link"] for r in results
        if r.get("link") and r["link"] != article.link and not is_excluded_domain(r["link"], [original_domain])
    ][:settings.verification_max_alternates]

    for link in alternates:
        paragraphs = await fetch_article_paragraphs(link, deps.page_fetcher)
        if _has_enough_content(paragraphs, min_chars):
            logger.info(f"🔁 Verified via alternate {link} for: {article.headline[:60]}")
            return link, paragraphs
    return None, []


async def enrich_article(article: Article, deps, ctx) -> EnrichmentRecord:
    """Drive one article through the machine. The article is updated in place."""
    settings = get_settings()
    score = article.relevance_headline
    high_signal = settings.high_signal_threshold

    state = S.START
    path = [state.value]
    outcome = OUTCOME_ENRICHED

    def advance(event: Optional[EnrichmentEvent]) -> EnrichmentState:
        nonlocal state
        state = next_state(state, event, score, high_signal)
        path.append(state.value)
        return state

    paragraphs = await _fetch_original(article, deps, ctx)
    if _has_enough_content(paragraphs, settings.min_article_chars):
        article.article_content = {"contents": paragraphs}
        advance(E.CONTENT_OK)
    else:
        advance(E.CONTENT_MISSING)
        advance(None)

    if state == S.VERIFICATION:
        alternate, alt_paragraphs = await _verify_elsewhere(article, deps, settings.min_article_chars)
        if alternate:
            article.article_content = {"contents": alt_paragraphs}
            outcome = OUTCOME_VERIFIED
            advance(E.ALTERNATE_FOUND)
        else:
            advance(E.ALTERNATES_EXHAUSTED)

    if state == S.FETCHED:
        await assess_article(article, deps.llm_service)
        advance(E.ASSESSED)
    elif state == S.SALVAGE:
        salvaged = await salvage_from_headline(article, deps.llm_service)
        advance(E.SALVAGED if salvaged else E.SALVAGE_FAILED)
        outcome = OUTCOME_SALVAGED if salvaged else OUTCOME_DROPPED_SALVAGE
    elif state == S.DROPPED:
        outcome = OUTCOME_DROPPED_FETCH

    article.enrichment_outcome = outcome
    return EnrichmentRecord(
        headline=article.headline,
        link=article.link,
        newspaper=article.newspaper,
        outcome=outcome,
        state_path=path,
        assessment_article=article.assessment_article or "",
    )


def is_dropped(record: EnrichmentRecord) -> bool:
    return record.outcome.startswith("dropped")


async def enrich_articles(candidates: List[Article], deps, ctx, stats) -> List[Article]:
    """Run the machine for every candidate concurrently (settle-all).

    Returns the articles that reached DONE. An article whose task raises is
    logged with its headline and link, recorded in run errors and excluded.
    """
    if not candidates:
        return []
    logger.info(f"📖 Enriching {len(candidates)} relevant headline(s)")

    results = await ctx.gather_settled([
        ctx.run_bounded(enrich_article, article, deps, ctx) for article in candidates
    ])

    enriched: List[Article] = []
    for article, result in zip(candidates, results):
        if isinstance(result, BaseException):
            logger.error(f"Enrichment crashed for '{article.headline[:80]}' ({article.link}): {result}")
            stats.errors.append(f"Enrichment failed for {article.link}: {type(result).__name__}: {result}")
            continue
        stats.enrichment_outcomes.append(result)
        if not is_dropped(result):
            enriched.append(article)
    return enriched
