"""
Pydantic models for intelligence-service (LLM) responses.

These define ONLY what the LLM produces. Every agent validates the raw JSON
against one of these before trusting it, and falls back to an explicit
default on ValidationError.

Convention: Suffix with "LLM" to distinguish from the persisted schemas.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .base import LooseStr, WealthMM
from .news import KeyIndividual


def _clamp_score(v) -> int:
    if v is None or v == "":
        raise ValueError("missing score")
    return max(0, min(100, int(float(v))))


class HeadlineAssessmentItemLLM(BaseModel):
    relevance_headline: int
    assessment_headline: LooseStr = ""

    @field_validator("relevance_headline", mode="before")
    @classmethod
    def _score(cls, v):
        return _clamp_score(v)


class HeadlineAssessmentLLM(BaseModel):
    """{"assessment": [...]} — one item per headline, same order."""
    assessment: List[HeadlineAssessmentItemLLM]


class ArticleAssessmentLLM(BaseModel):
    relevance_article: int
    assessment_article: LooseStr = ""
    topic: LooseStr = ""
    key_individuals: List[KeyIndividual] = Field(default_factory=list)

    @field_validator("relevance_article", mode="before")
    @classmethod
    def _score(cls, v):
        return _clamp_score(v)


class SalvageLLM(BaseModel):
    """Headline-only synthesis used when no article body can be retrieved."""
    headline: LooseStr
    summary: LooseStr
    key_individuals: List[KeyIndividual] = Field(default_factory=list)

    @field_validator("summary")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("empty summary")
        return v


class ContactCandidateLLM(BaseModel):
    name: LooseStr
    role_in_event: LooseStr = ""
    company: LooseStr = ""


class KeyContactsLLM(BaseModel):
    key_contacts: List[ContactCandidateLLM] = Field(default_factory=list)


class EnrichedContactsLLM(BaseModel):
    enriched_contacts: List[ContactCandidateLLM] = Field(default_factory=list)


class ContactDetailsLLM(BaseModel):
    email: LooseStr = ""
    role: LooseStr = ""
    company: LooseStr = ""


class OpportunityLLM(BaseModel):
    reach_out_to: LooseStr
    contact_details: ContactDetailsLLM = Field(default_factory=ContactDetailsLLM)
    based_in: LooseStr = ""
    why_contact: LooseStr = ""
    likely_mm_dollar_wealth: WealthMM = 0.0


class OpportunitiesLLM(BaseModel):
    opportunities: List[OpportunityLLM] = Field(default_factory=list)


class ClusterLLM(BaseModel):
    event_key: LooseStr
    article_ids: List[str] = Field(default_factory=list)

    @field_validator("article_ids", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        if not isinstance(v, list):
            return []
        return [str(x) for x in v]


class ClusterResponseLLM(BaseModel):
    events: List[ClusterLLM]


class EntitiesLLM(BaseModel):
    entities: List[LooseStr] = Field(default_factory=list)


class WikiChoiceLLM(BaseModel):
    best_title: Optional[str] = None


class EventSynthesisLLM(BaseModel):
    headline: LooseStr
    summary: LooseStr
    key_individuals: List[KeyIndividual] = Field(default_factory=list)

    @field_validator("headline", "summary")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("empty field")
        return v
