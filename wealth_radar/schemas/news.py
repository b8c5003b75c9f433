"""
News source, headline and article data models.

These models represent the raw material of the pipeline: headlines scraped
from configured sources and the articles they become once assessed.

Hierarchy: NewsSource → CandidateHeadline → Article (→ clustered into events)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from .base import LooseStr, SourceStatus

AWAITING_ASSESSMENT = "Awaiting assessment"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class NewsSource(BaseModel):
    """Scraping configuration for one news site."""
    name: str
    newspaper: str = ""
    base_url: str
    section_url: str = ""
    country: str = ""
    language: str = "en"
    status: SourceStatus = SourceStatus.ACTIVE

    # Extraction
    use_json_ld: bool = True
    extractor_key: Optional[str] = None
    headline_selector: Optional[str] = None
    article_selector: Optional[str] = None

    # Health tracking
    last_scraped_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None

    class Config:
        use_enum_values = True

    @property
    def display_name(self) -> str:
        return self.newspaper or self.name

    @property
    def listing_url(self) -> str:
        return self.section_url or self.base_url


class CandidateHeadline(BaseModel):
    """A headline/link pair found on a source page."""
    headline: str
    link: str
    newspaper: str = ""
    country: str = ""
    source_name: str = ""


class KeyIndividual(BaseModel):
    """Person or entity tied to a wealth event."""
    name: LooseStr = ""
    role_in_event: LooseStr = ""
    company: LooseStr = ""
    email_suggestion: LooseStr = ""


class Article(BaseModel):
    """
    Pipeline record for one headline, and the persisted article document.

    Created skeletal by the freshness filter, scored by the headline
    assessor and deepened in place by enrichment. `link` is the natural key.
    """
    id: str = Field(default_factory=new_id)
    link: str
    headline: str
    newspaper: str = ""
    country: str = ""
    source_name: str = ""

    # Headline-level assessment
    relevance_headline: int = 0
    assessment_headline: str = AWAITING_ASSESSMENT

    # Article-level enrichment
    article_content: Optional[Dict[str, List[str]]] = None
    relevance_article: Optional[int] = None
    assessment_article: Optional[str] = None
    topic: Optional[str] = None
    key_individuals: List[KeyIndividual] = Field(default_factory=list)
    enrichment_outcome: Optional[str] = None

    # Headline embedding (re-computed from headline + assessment on commit)
    embedding: Optional[List[float]] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("relevance_headline", mode="before")
    @classmethod
    def _clamp_headline_score(cls, v):
        try:
            return max(0, min(100, int(v)))
        except (TypeError, ValueError):
            return 0

    @classmethod
    def from_candidate(cls, candidate: CandidateHeadline) -> "Article":
        return cls(
            link=candidate.link,
            headline=candidate.headline,
            newspaper=candidate.newspaper,
            country=candidate.country,
            source_name=candidate.source_name,
        )

    @property
    def content_text(self) -> str:
        if not self.article_content:
            return ""
        return "\n".join(self.article_content.get("contents", []))

    def to_document(self, display_threshold: int) -> Dict[str, Any]:
        """Serialize for storage, dropping body text below the display threshold."""
        doc = self.model_dump(mode="json")
        keep_content = (
            self.relevance_headline > display_threshold
            or (self.relevance_article or 0) > display_threshold
        )
        if not keep_content:
            doc["article_content"] = None
        return doc
