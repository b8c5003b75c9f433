"""API request/response schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field


# -- Pipeline --

class PipelineRunRequest(BaseModel):
    refresh_mode: Optional[bool] = None  # None = REFRESH_MODE setting
    mock_mode: bool = False


class PipelineRunResponse(BaseModel):
    run_id: str
    status: str  # started | running | completed | failed | cancelled
    message: str


class FunnelCounts(BaseModel):
    headlines_scraped: int = 0
    fresh_headlines_found: int = 0
    headlines_assessed: int = 0
    relevant_headlines: int = 0
    articles_enriched: int = 0
    relevant_articles: int = 0
    events_synthesized: int = 0
    events_emailed: int = 0
    opportunities_found: int = 0


class PipelineStatusResponse(BaseModel):
    run_id: str
    status: str
    current_stage: str
    funnel: FunnelCounts = Field(default_factory=FunnelCounts)
    errors: List[str] = Field(default_factory=list)
    started_at: str
    elapsed_seconds: float
