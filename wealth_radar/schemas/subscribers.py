"""Subscriber model. Read-only to the pipeline."""

from typing import List, Optional

from pydantic import BaseModel, Field


class Subscriber(BaseModel):
    email: str
    first_name: str = ""
    countries: List[str] = Field(default_factory=list)
    email_notifications_enabled: bool = True
    push_notifications_enabled: bool = False
    is_active: bool = True
    # Telegram chat used as the push address
    telegram_chat_id: Optional[str] = None

    @property
    def can_receive_push(self) -> bool:
        return self.push_notifications_enabled and bool(self.telegram_chat_id)
