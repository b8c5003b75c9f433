"""
Synthesized event models.

An event is the canonical brief for one real-world wealth event, built from
one or more clustered articles. `event_key` is the natural key.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .news import KeyIndividual, new_id, utcnow


class SourceArticleRef(BaseModel):
    """Pointer from an event back to one of its member articles."""
    headline: str
    link: str
    newspaper: str = ""


class SynthesizedEvent(BaseModel):
    id: str = Field(default_factory=new_id)
    event_key: str
    synthesized_headline: str
    synthesized_summary: str
    ai_assessment_reason: str = ""
    country: str = ""
    source_articles: List[SourceArticleRef] = Field(default_factory=list, min_length=1)
    highest_relevance_score: int = 0
    key_individuals: List[KeyIndividual] = Field(default_factory=list)
    emailed: bool = False
    email_sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def brief_fields(self) -> Dict[str, Any]:
        """Fields refreshed on every commit. Delivery state is not among them."""
        return self.model_dump(
            mode="json",
            exclude={"id", "emailed", "email_sent_at", "created_at"},
        )
