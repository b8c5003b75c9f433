"""
Opportunity models — one contactable individual per `reach_out_to`.

`why_contact` is a newest-first history that only grows, and
`likely_mm_dollar_wealth` only ever moves up across rediscoveries.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .base import LooseStr, WealthMM
from .news import new_id, utcnow


class ContactDetails(BaseModel):
    email: LooseStr = ""
    role: LooseStr = ""
    company: LooseStr = ""


class Opportunity(BaseModel):
    id: str = Field(default_factory=new_id)
    reach_out_to: LooseStr
    contact_details: ContactDetails = Field(default_factory=ContactDetails)
    based_in: LooseStr = ""
    why_contact: List[str] = Field(default_factory=list)
    likely_mm_dollar_wealth: WealthMM = 0.0
    source_article_id: str = ""
    source_event_id: Optional[str] = None
    emailed: bool = False
    emailed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def latest_reason(self) -> str:
        return self.why_contact[0] if self.why_contact else ""
