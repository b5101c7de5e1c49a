"""
reCAPTCHA Enterprise verification.

A token passes when Google reports it valid, issued for the expected
action, and scored above the configured threshold. Transport or API
errors fail closed. With RECAPTCHA_ENABLED=false (development) every
token passes.
"""

import logging
from typing import Optional

import httpx

from shared.config import get_settings

logger = logging.getLogger(__name__)

RECAPTCHA_API_URL = "https://recaptchaenterprise.googleapis.com/v1/projects/{project}/assessments"


class RecaptchaVerifier:
    def __init__(
        self,
        enabled: Optional[bool] = None,
        threshold: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.enabled = settings.RECAPTCHA_ENABLED if enabled is None else enabled
        self.threshold = settings.RECAPTCHA_SCORE_THRESHOLD if threshold is None else threshold
        self.project_id = settings.RECAPTCHA_PROJECT_ID
        self.api_key = settings.RECAPTCHA_API_KEY
        self.site_key = settings.RECAPTCHA_SITE_KEY
        self.expected_action = settings.RECAPTCHA_EXPECTED_ACTION
        self._http_client = http_client

    async def _create_assessment(self, payload: dict) -> dict:
        url = RECAPTCHA_API_URL.format(project=self.project_id)
        if self._http_client is not None:
            response = await self._http_client.post(
                url, params={"key": self.api_key}, json=payload, timeout=10.0
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    url, params={"key": self.api_key}, json=payload, timeout=10.0
                )
        response.raise_for_status()
        return response.json()

    async def verify(self, token: str, origin: Optional[str] = None) -> bool:
        """
        Verify a reCAPTCHA Enterprise token.

        Args:
            token: Token produced by the client widget
            origin: Caller IP, forwarded to Google when known

        Returns:
            True if the token is trusted, False otherwise
        """
        if not self.enabled:
            return True

        if not token:
            return False

        event = {
            "token": token,
            "expectedAction": self.expected_action,
            "siteKey": self.site_key,
        }
        if origin:
            event["userIpAddress"] = origin

        try:
            result = await self._create_assessment({"event": event})
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"reCAPTCHA assessment failed: {e}", extra={"origin": origin})
            return False

        token_properties = result.get("tokenProperties", {})
        if not token_properties.get("valid", False):
            logger.warning(
                f"reCAPTCHA token invalid: {token_properties.get('invalidReason')}",
                extra={"origin": origin},
            )
            return False

        action = token_properties.get("action")
        if action and action != self.expected_action:
            logger.warning(
                f"reCAPTCHA action mismatch: expected {self.expected_action}, got {action}",
                extra={"origin": origin},
            )
            return False

        score = result.get("riskAnalysis", {}).get("score", 0.0)
        if score <= self.threshold:
            logger.warning(
                f"reCAPTCHA score {score} below threshold {self.threshold}",
                extra={"origin": origin},
            )
            return False

        return True
