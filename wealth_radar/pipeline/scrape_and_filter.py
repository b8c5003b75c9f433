"""Stage 2: scrape every active source, then keep only fresh headlines."""

import logging

from ..errors import StoreError
from ..news.freshness import filter_fresh
from ..news.scraper import scrape_all_headlines
from ..news.sources import SourceRegistry
from ..schemas.pipeline import RunPayload, StageResult
from .preflight import stage_banner

logger = logging.getLogger(__name__)


async def run_scrape_and_filter(payload: RunPayload, deps, ctx) -> StageResult:
    stage_banner("STAGE 2: SCRAPE & FILTER")
    stats = payload.run_stats
    sources = ctx.source_cache.sources()

    candidates, health = await scrape_all_headlines(sources, deps.page_fetcher, ctx)
    stats.headlines_scraped = len(candidates)
    stats.scraper_health = health

    registry = SourceRegistry(deps.store)
    for entry in health:
        try:
            registry.record_scrape(entry.source, entry.success)
        except StoreError as e:
            logger.warning(f"Could not record scrape timestamps for {entry.source}: {e}")

    ok = sum(1 for h in health if h.success)
    logger.info(f"📰 {stats.headlines_scraped} headline(s) from {ok}/{len(health)} source(s)")

    articles = filter_fresh(candidates, deps.store, deps.embedding_tool, refresh_mode=ctx.refresh_mode)
    stats.fresh_headlines_found = len(articles)
    payload.articles_for_pipeline = articles
    if not articles:
        logger.info("Nothing new to process")
        return StageResult(payload=payload, halt=True)
    return StageResult(payload=payload)
