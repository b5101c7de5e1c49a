"""
SMS delivery through the Twilio REST API.
"""

import logging
from typing import Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import get_settings

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class SmsDeliveryError(Exception):
    """Raised when Twilio is not configured or rejects a message."""


class TwilioSmsClient:
    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
    ):
        settings = get_settings()
        self.account_sid = account_sid if account_sid is not None else settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number if from_number is not None else settings.TWILIO_FROM_NUMBER

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post_message(self, data: dict) -> dict:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                TWILIO_API_URL.format(sid=self.account_sid),
                auth=(self.account_sid, self.auth_token),
                data=data,
                timeout=10.0,
            )
            response.raise_for_status()
            return response.json()

    async def send_sms(self, to: str, text: str) -> str:
        """
        Send one SMS.

        Args:
            to: Recipient in E.164 format
            text: Message body

        Returns:
            Twilio message SID

        Raises:
            SmsDeliveryError: not configured, bad number, or Twilio failed
        """
        if not (self.account_sid and self.auth_token and self.from_number):
            raise SmsDeliveryError("Twilio credentials are not configured")
        if not to.startswith("+"):
            raise SmsDeliveryError(f"Phone number must be in E.164 format: {to}")

        try:
            result = await self._post_message({"To": to, "From": self.from_number, "Body": text})
        except httpx.HTTPError as e:
            logger.error(f"Twilio SMS send error to {to}: {e}")
            raise SmsDeliveryError(f"Failed to send SMS: {e}") from e

        sid = result.get("sid", "")
        logger.info(f"SMS sent via Twilio: {sid}")
        return sid
