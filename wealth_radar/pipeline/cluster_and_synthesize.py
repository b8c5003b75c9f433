"""Stage 4: cluster relevant articles into events and write one brief per event."""

import logging

from ..agents.event_synthesizer import cluster_and_synthesize
from ..config import get_settings
from ..schemas.pipeline import EventReportLine, RunPayload, StageResult
from .preflight import stage_banner

logger = logging.getLogger(__name__)


async def run_cluster_and_synthesize(payload: RunPayload, deps, ctx) -> StageResult:
    stage_banner("STAGE 4: CLUSTER & SYNTHESIZE")
    stats = payload.run_stats
    threshold = get_settings().articles_relevance_threshold
    relevant = [a for a in payload.enriched_articles if (a.relevance_article or 0) >= threshold]
    if not relevant:
        logger.info("No relevant articles to cluster")
        return StageResult(payload=payload)

    events = await cluster_and_synthesize(relevant, deps, ctx, stats)
    payload.synthesized_events_to_save = events
    stats.events_synthesized = len(events)
    stats.synthesized_events_for_report = [
        EventReportLine(
            synthesized_headline=e.synthesized_headline,
            highest_relevance_score=e.highest_relevance_score,
        )
        for e in events
    ]
    logger.info(f"📝 {len(events)} event brief(s) from {stats.events_clustered} cluster(s)")
    return StageResult(payload=payload)
