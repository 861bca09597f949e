"""Pre-flight admission decision shared by every proxy endpoint.

Checks run cheapest first and stop at the first rejection:

1. identity present
2. rate window has room (consumes a slot even if step 3 rejects)
3. free trial quota not exhausted, counting calls still in flight

An Allowed decision holds a ledger reservation that the caller must
commit or release.
"""

from dataclasses import dataclass
from typing import Any, Union

from trialproxy.app.core.logging import get_log_context, get_logger
from trialproxy.app.exceptions import (
    MissingIdentityError,
    QuotaExhaustedError,
    RateLimitedError,
)
from trialproxy.app.services.quota_ledger import QuotaLedger
from trialproxy.app.services.rate_window import RateWindow, RateWindowResult

logger = get_logger(__name__)


@dataclass(frozen=True)
class Allowed:
    current_usage: int
    rate: RateWindowResult


@dataclass(frozen=True)
class RateLimited:
    rate: RateWindowResult


@dataclass(frozen=True)
class QuotaExhausted:
    current_usage: int
    rate: RateWindowResult


@dataclass(frozen=True)
class MissingIdentity:
    pass


AdmissionDecision = Union[Allowed, RateLimited, QuotaExhausted, MissingIdentity]


def rate_limit_headers(rate: RateWindowResult, now: float) -> dict[str, str]:
    """Standard ``RateLimit-*`` response headers for a rate check.

    ``RateLimit-Reset`` is the number of seconds until the window closes.
    """
    return {
        "RateLimit-Limit": str(rate.limit),
        "RateLimit-Remaining": str(rate.remaining),
        "RateLimit-Reset": str(rate.seconds_until_reset(now)),
    }


def normalize_user_id(user_id: Any) -> str | None:
    """Return the user id if it is a non-blank string, else None."""
    if not isinstance(user_id, str) or not user_id.strip():
        return None
    return user_id


class AdmissionGate:
    """Composes a rate window and the quota ledger into one decision."""

    def __init__(self, ledger: QuotaLedger, free_trial_limit: int):
        self.ledger = ledger
        self.free_trial_limit = free_trial_limit

    async def check(self, user_id: Any, rate_window: RateWindow) -> AdmissionDecision:
        """Decide whether a request from ``user_id`` may reach the upstream.

        Args:
            user_id: Caller-supplied identity, taken as given
            rate_window: The window of the endpoint being called

        Returns:
            Exactly one of Allowed, RateLimited, QuotaExhausted, MissingIdentity
        """
        key = normalize_user_id(user_id)
        if key is None:
            return MissingIdentity()

        rate = await rate_window.check(key)
        if not rate.allowed:
            return RateLimited(rate=rate)

        used = await self.ledger.peek(key)
        if not await self.ledger.try_reserve(key, self.free_trial_limit):
            return QuotaExhausted(current_usage=used, rate=rate)

        return Allowed(current_usage=used, rate=rate)

    def ensure_admitted(
        self,
        decision: AdmissionDecision,
        now: float,
        user_id: str | None = None,
        upstream: str | None = None,
    ) -> Allowed:
        """Return the decision if admitted, otherwise raise the matching error.

        Raises:
            MissingIdentityError: No usable user id
            RateLimitedError: Window is full, with Retry-After and RateLimit-* headers
            QuotaExhaustedError: Free trial allowance used up
        """
        if isinstance(decision, Allowed):
            return decision

        context = get_log_context(user_id=user_id, upstream=upstream)

        if isinstance(decision, MissingIdentity):
            raise MissingIdentityError()

        if isinstance(decision, RateLimited):
            headers = rate_limit_headers(decision.rate, now)
            headers["Retry-After"] = str(decision.rate.retry_after or 60)
            logger.info("Request rate limited", extra=context)
            raise RateLimitedError(headers=headers)

        logger.info(
            f"Free trial limit reached: {decision.current_usage}/{self.free_trial_limit}",
            extra=context,
        )
        raise QuotaExhaustedError(
            used=decision.current_usage,
            limit=self.free_trial_limit,
            headers=rate_limit_headers(decision.rate, now),
        )
