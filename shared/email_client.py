"""
Email delivery through Resend.

The resend SDK is synchronous, so sends run in a worker thread.
"""

import asyncio
import logging
from typing import Optional

import resend

from shared.config import get_settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Raised when Resend rejects or fails to accept a message."""


class ResendEmailClient:
    def __init__(self, api_key: Optional[str] = None, from_address: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.from_address = from_address or settings.EMAIL_FROM_ADDRESS
        self.from_name = settings.CLINIC_NAME

    def _send(self, email_data: dict) -> dict:
        resend.api_key = self.api_key
        return resend.Emails.send(email_data)

    async def send_email(
        self, to: str, subject: str, text: str, html: Optional[str] = None
    ) -> str:
        """
        Send one email.

        Returns:
            Resend message id

        Raises:
            EmailDeliveryError: not configured, or Resend failed
        """
        if not self.api_key:
            raise EmailDeliveryError("RESEND_API_KEY is not configured")

        email_data = {
            "from": f"{self.from_name} <{self.from_address}>",
            "to": [to],
            "subject": subject,
            "text": text,
        }
        if html:
            email_data["html"] = html

        try:
            response = await asyncio.to_thread(self._send, email_data)
        except Exception as e:
            logger.error(f"Email send error to {to}: {e}")
            raise EmailDeliveryError(f"Failed to send email: {e}") from e

        message_id = response.get("id", "") if isinstance(response, dict) else ""
        logger.info(f"Email sent via Resend: {message_id}")
        return message_id
