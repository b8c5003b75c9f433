"""Stage 3: headline assessment, enrichment and opportunity extraction."""

import logging

from ..agents.contact_agent import find_opportunities
from ..agents.enrichment import enrich_articles
from ..agents.headline_assessor import assess_headlines
from ..config import get_settings
from ..schemas.pipeline import RunPayload, StageResult
from .preflight import stage_banner

logger = logging.getLogger(__name__)


async def run_assess_and_enrich(payload: RunPayload, deps, ctx) -> StageResult:
    stage_banner("STAGE 3: ASSESS & ENRICH")
    settings = get_settings()
    stats = payload.run_stats

    articles = await assess_headlines(payload.articles_for_pipeline, deps, ctx)
    payload.assessed_candidates = articles
    payload.full_article_map = {a.id: a for a in articles}
    stats.headlines_assessed = len(articles)

    relevant = [a for a in articles if a.relevance_headline >= settings.headlines_relevance_threshold]
    stats.relevant_headlines = len(relevant)
    logger.info(
        f"🎯 {len(relevant)}/{len(articles)} headline(s) at or above {settings.headlines_relevance_threshold}"
    )

    enriched = await enrich_articles(relevant, deps, ctx, stats)
    payload.enriched_articles = enriched
    stats.articles_enriched = len(enriched)

    relevant_articles = [
        a for a in enriched if (a.relevance_article or 0) >= settings.articles_relevance_threshold
    ]
    stats.relevant_articles = len(relevant_articles)
    logger.info(
        f"📈 {len(relevant_articles)}/{len(enriched)} enriched article(s) at or above "
        f"{settings.articles_relevance_threshold}"
    )

    opportunities = await find_opportunities(relevant_articles, deps, ctx, stats)
    payload.opportunities_to_save = opportunities
    stats.opportunities_found = len(opportunities)
    return StageResult(payload=payload)
