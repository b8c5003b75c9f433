"""
Schemas package — all data models for the wealth-event radar.

Models are organized by domain in submodules:
  - base.py: Enums and value types
  - news.py: NewsSource, CandidateHeadline, KeyIndividual, Article
  - events.py: SourceArticleRef, SynthesizedEvent
  - opportunities.py: ContactDetails, Opportunity
  - subscribers.py: Subscriber
  - pipeline.py: RunStats, RunPayload, StageResult, RunOutcome (run-scoped state)
  - llm_outputs.py: Validation models for intelligence-service responses
"""

from wealth_radar.schemas.base import (
    SourceStatus, ExtractionStrategy, EnrichmentState, EnrichmentEvent,
    RunStatus, LooseStr,
)
from wealth_radar.schemas.news import (
    AWAITING_ASSESSMENT, NewsSource, CandidateHeadline, KeyIndividual, Article,
)
from wealth_radar.schemas.events import SourceArticleRef, SynthesizedEvent
from wealth_radar.schemas.opportunities import ContactDetails, Opportunity
from wealth_radar.schemas.subscribers import Subscriber
from wealth_radar.schemas.pipeline import (
    ScraperHealth, EnrichmentRecord, EventReportLine, RunStats, RunPayload, StageResult, RunOutcome,
)

__all__ = [
    # base
    "SourceStatus", "ExtractionStrategy", "EnrichmentState", "EnrichmentEvent",
    "RunStatus", "LooseStr",
    # news
    "AWAITING_ASSESSMENT", "NewsSource", "CandidateHeadline", "KeyIndividual", "Article",
    # events
    "SourceArticleRef", "SynthesizedEvent",
    # opportunities
    "ContactDetails", "Opportunity",
    # subscribers
    "Subscriber",
    # pipeline
    "ScraperHealth", "EnrichmentRecord", "EventReportLine", "RunStats", "RunPayload", "StageResult", "RunOutcome",
]
