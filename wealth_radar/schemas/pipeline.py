"""
Run-scoped pipeline state.

RunPayload is the single mutable record threaded through the five stages.
Each stage function receives it and returns a StageResult wrapping the
(updated) payload and a success flag. Nothing here is persisted as a whole.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .events import SynthesizedEvent
from .news import Article
from .opportunities import Opportunity


class ScraperHealth(BaseModel):
    """Per-source scrape result for one run."""
    source: str
    success: bool
    count: int = 0
    error: Optional[str] = None


class EnrichmentRecord(BaseModel):
    """Outcome of the enrichment machine for one article."""
    headline: str
    link: str
    newspaper: str = ""
    outcome: str
    state_path: List[str] = Field(default_factory=list)
    assessment_article: str = ""


class EventReportLine(BaseModel):
    synthesized_headline: str
    highest_relevance_score: int


class RunStats(BaseModel):
    """Funnel counters and per-item records collected during one run."""
    headlines_scraped: int = 0
    fresh_headlines_found: int = 0
    headlines_assessed: int = 0
    relevant_headlines: int = 0
    articles_enriched: int = 0
    relevant_articles: int = 0
    events_clustered: int = 0
    events_synthesized: int = 0
    events_emailed: int = 0
    opportunities_found: int = 0

    notifications_sent: int = 0
    notifications_skipped: int = 0
    notifications_failed: int = 0
    push_alerts_sent: int = 0
    push_alerts_failed: int = 0

    scraper_health: List[ScraperHealth] = Field(default_factory=list)
    enrichment_outcomes: List[EnrichmentRecord] = Field(default_factory=list)
    synthesized_events_for_report: List[EventReportLine] = Field(default_factory=list)

    errors: List[str] = Field(default_factory=list)
    pipeline_error: Optional[str] = None


@dataclass
class RunPayload:
    """Mutable state for one pipeline run."""
    run_stats: RunStats = field(default_factory=RunStats)
    articles_for_pipeline: List[Article] = field(default_factory=list)
    assessed_candidates: List[Article] = field(default_factory=list)
    enriched_articles: List[Article] = field(default_factory=list)
    full_article_map: Dict[str, Article] = field(default_factory=dict)
    synthesized_events_to_save: List[SynthesizedEvent] = field(default_factory=list)
    opportunities_to_save: List[Opportunity] = field(default_factory=list)
    # Filled by the commit stage: events and opportunities as they exist in the store after upsert
    committed_events: List[SynthesizedEvent] = field(default_factory=list)
    committed_opportunities: List[Opportunity] = field(default_factory=list)


@dataclass
class StageResult:
    payload: RunPayload
    success: bool = True
    # Stage finished normally but there is nothing left for later stages
    halt: bool = False


class RunOutcome(BaseModel):
    """What a finished run reports to the CLI and the API."""
    run_id: str
    success: bool
    committed: bool = False
    cancelled: bool = False
    duration_seconds: float = 0.0
    stats: RunStats = Field(default_factory=RunStats)
