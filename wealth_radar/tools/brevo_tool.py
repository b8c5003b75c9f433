"""
Brevo (formerly Sendinblue) transactional email sender.

Safety: outside production, sends are skipped and reported as such unless
FORCE_EMAIL_SEND_DEV=true. A skipped send is never a success, so callers
never mark anything as delivered in development.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from ..config import get_settings
from ..schemas.news import utcnow

logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"


@dataclass
class EmailResult:
    """Result of an email send attempt."""
    success: bool
    skipped: bool = False
    message_id: str = ""
    recipient: str = ""
    subject: str = ""
    error: str = ""
    sent_at: str = field(default_factory=lambda: utcnow().isoformat())


class BrevoTool:
    """Send transactional emails via the Brevo API."""

    def __init__(self):
        self.settings = get_settings()

    def _skip_reason(self) -> Optional[str]:
        if not self.settings.is_production and not self.settings.force_email_send_dev:
            return f"environment={self.settings.environment} (set FORCE_EMAIL_SEND_DEV to send)"
        if not self.settings.brevo_api_key:
            return "BREVO_API_KEY not configured"
        if not self.settings.brevo_sender_email:
            return "BREVO_SENDER_EMAIL not configured"
        return None

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        to_name: str = "",
        text_content: str = "",
    ) -> EmailResult:
        skip = self._skip_reason()
        if skip:
            logger.info(f"📭 Email to {to_email} skipped: {skip}")
            return EmailResult(success=False, skipped=True, recipient=to_email, subject=subject, error=skip)

        payload = {
            "sender": {
                "name": self.settings.brevo_sender_name,
                "email": self.settings.brevo_sender_email,
            },
            "to": [{"email": to_email, "name": to_name or to_email}],
            "subject": subject,
            "htmlContent": html_content,
        }
        if text_content:
            payload["textContent"] = text_content

        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(
                    BREVO_API_URL,
                    headers={
                        "api-key": self.settings.brevo_api_key,
                        "Content-Type": "application/json",
                        "Accept": "application/json",
                    },
                    json=payload,
                )
                response.raise_for_status()
                message_id = response.json().get("messageId", "")
        except httpx.HTTPStatusError as e:
            error_msg = f"Brevo API error {e.response.status_code}: {e.response.text[:200]}"
            logger.error(error_msg)
            return EmailResult(success=False, recipient=to_email, subject=subject, error=error_msg)
        except (httpx.HTTPError, ValueError) as e:
            error_msg = f"Email send failed: {str(e)[:200]}"
            logger.error(error_msg)
            return EmailResult(success=False, recipient=to_email, subject=subject, error=error_msg)

        logger.info(f"📧 Email sent via Brevo: {to_email} | subject='{subject[:40]}' | messageId={message_id}")
        return EmailResult(success=True, message_id=message_id, recipient=to_email, subject=subject)
