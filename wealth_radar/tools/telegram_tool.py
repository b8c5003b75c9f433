"""
Telegram push notifications via the Bot API.

Same safety contract as email: outside production the send is skipped
(reported as skipped, never as success) unless FORCE_EMAIL_SEND_DEV=true.
429 responses are retried honouring the server's retry_after.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import get_settings

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
# Telegram rejects messages over 4096 chars
MAX_MESSAGE_CHARS = 4000


@dataclass
class PushResult:
    success: bool
    skipped: bool = False
    chat_id: str = ""
    error: str = ""


class TelegramTool:
    """Send plain-text messages to a subscriber's chat."""

    def __init__(self, max_attempts: int = 3, backoff_seconds: float = 2.0):
        self.settings = get_settings()
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    def _skip_reason(self) -> Optional[str]:
        if not self.settings.is_production and not self.settings.force_email_send_dev:
            return f"environment={self.settings.environment}"
        if not self.settings.telegram_bot_token:
            return "TELEGRAM_BOT_TOKEN not configured"
        return None

    async def send_message(self, chat_id: str, text: str) -> PushResult:
        skip = self._skip_reason()
        if skip:
            logger.info(f"📭 Push to chat {chat_id} skipped: {skip}")
            return PushResult(success=False, skipped=True, chat_id=chat_id, error=skip)

        if len(text) > MAX_MESSAGE_CHARS:
            text = text[:MAX_MESSAGE_CHARS - 3] + "..."
        url = TELEGRAM_API_URL.format(token=self.settings.telegram_bot_token)
        payload = {"chat_id": chat_id, "text": text, "disable_web_page_preview": True}

        last_err = ""
        async with httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0)) as client:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    r = await client.post(url, data=payload)
                except httpx.HTTPError as e:
                    last_err = f"network error: {e}"
                    await asyncio.sleep(self.backoff_seconds * attempt)
                    continue

                if r.status_code == 200:
                    logger.info(f"📲 Push sent to chat {chat_id}")
                    return PushResult(success=True, chat_id=chat_id)

                if r.status_code == 429 or r.status_code >= 500:
                    retry_after = 0
                    try:
                        retry_after = int(r.json().get("parameters", {}).get("retry_after", 0))
                    except ValueError:
                        pass
                    last_err = f"HTTP {r.status_code}"
                    await asyncio.sleep(min(retry_after or self.backoff_seconds * attempt, 30))
                    continue

                last_err = f"HTTP {r.status_code}: {r.text[:300]}"
                break

        logger.error(f"Telegram push to {chat_id} failed: {last_err}")
        return PushResult(success=False, chat_id=chat_id, error=last_err)
