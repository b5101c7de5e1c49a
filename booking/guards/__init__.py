"""Abuse protection for public booking endpoints."""

import logging
from typing import Optional

from booking.errors import VerificationFailed
from booking.guards.rate_limiter import (
    CounterStore,
    InMemoryCounterStore,
    RateLimiter,
    RedisCounterStore,
)
from booking.guards.recaptcha import RecaptchaVerifier

logger = logging.getLogger(__name__)


class AbuseGuard:
    """Rate limit plus human verification, checked before any state change."""

    def __init__(self, rate_limiter: RateLimiter, verifier: RecaptchaVerifier):
        self.rate_limiter = rate_limiter
        self.verifier = verifier

    async def enforce_rate_limit(self, origin: str) -> None:
        await self.rate_limiter.enforce(origin)

    async def verify_human(self, token: str, origin: Optional[str] = None) -> None:
        if not await self.verifier.verify(token, origin):
            raise VerificationFailed(
                "Security verification failed, please try again",
                details={"origin": origin},
            )


__all__ = [
    "AbuseGuard",
    "CounterStore",
    "InMemoryCounterStore",
    "RateLimiter",
    "RecaptchaVerifier",
    "RedisCounterStore",
]
