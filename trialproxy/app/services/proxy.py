"""Proxy orchestration: admission, one upstream call, accounting, relay.

Both proxied endpoints run through ``ProxyEndpoint.handle``; they differ
only in the rate window they use and in how the upstream request is built.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import Response

from trialproxy.app.core.config import Settings
from trialproxy.app.core.http_client import build_timeout
from trialproxy.app.core.logging import get_log_context, get_logger
from trialproxy.app.exceptions import ProxyError, UpstreamTransportError
from trialproxy.app.services.admission import AdmissionGate, rate_limit_headers
from trialproxy.app.services.quota_ledger import QuotaLedger
from trialproxy.app.services.rate_window import RateWindow
from trialproxy.app.services.upstream import (
    TransportFailure,
    UpstreamCaller,
    UpstreamRequest,
    UpstreamSuccess,
)

logger = get_logger(__name__)

RequestBuilder = Callable[[], UpstreamRequest]


def _relay(status_code: int, content: bytes, media_type: Optional[str], headers: dict[str, str]) -> Response:
    return Response(
        content=content,
        status_code=status_code,
        media_type=media_type or "application/json",
        headers=headers,
    )


class ProxyEndpoint:
    """Runs one proxied request from admission check to relayed response."""

    def __init__(
        self,
        name: str,
        rate_window: RateWindow,
        gate: AdmissionGate,
        caller: UpstreamCaller,
    ):
        self.name = name
        self.rate_window = rate_window
        self.gate = gate
        self.caller = caller

    async def handle(
        self,
        user_id: Any,
        build_request: RequestBuilder,
        request_id: Optional[str] = None,
    ) -> Response:
        """Admit, dispatch and account for one request.

        Args:
            user_id: Caller-supplied identity from the request body
            build_request: Validates the payload and returns the upstream call;
                runs only for admitted requests
            request_id: Request ID for log correlation

        Returns:
            The relayed upstream response

        Raises:
            ProxyError: Any rejection; errors raised after the rate check
                carry the RateLimit-* headers of that check
        """
        decision = await self.gate.check(user_id, self.rate_window)
        now = self.rate_window.clock()
        admitted = self.gate.ensure_admitted(
            decision, now, user_id=user_id if isinstance(user_id, str) else None, upstream=self.name
        )
        ledger = self.gate.ledger
        committed = False
        # The admitted request holds a quota reservation from here on.
        try:
            headers = rate_limit_headers(admitted.rate, now)
            context = get_log_context(request_id=request_id, user_id=user_id, upstream=self.name)

            try:
                upstream_request = build_request()
            except ProxyError as e:
                e.headers = {**headers, **e.headers}
                raise

            result = await self.caller.send(upstream_request, upstream=self.name)

            if isinstance(result, TransportFailure):
                logger.error(f"{self.name} proxy error: {type(result.cause).__name__}", extra=context)
                raise UpstreamTransportError(headers=headers)

            if isinstance(result, UpstreamSuccess):
                used = await ledger.commit(user_id)
                committed = True
                logger.info(f"User {user_id} usage: {used}/{self.gate.free_trial_limit}", extra=context)

            return _relay(result.status_code, result.content, result.media_type, headers)
        finally:
            if not committed:
                ledger.release(user_id)


@dataclass
class ProxyState:
    """Process-wide admission state, built once per application.

    Attributes:
        settings: Settings the state was built from
        ledger: Usage counts shared by every endpoint
        gate: Admission gate over the shared ledger
        caller: Upstream caller shared by both endpoints
        gemini: Generative-call endpoint
        search: Image-search endpoint
    """
    settings: Settings
    ledger: QuotaLedger
    gate: AdmissionGate
    caller: UpstreamCaller
    gemini: ProxyEndpoint
    search: ProxyEndpoint

    @property
    def rate_windows(self) -> dict[str, RateWindow]:
        return {"gemini": self.gemini.rate_window, "search": self.search.rate_window}

    @classmethod
    def build(
        cls,
        settings: Settings,
        clock: Optional[Callable[[], float]] = None,
    ) -> "ProxyState":
        """Wire the ledger, gate, rate windows and endpoints from settings."""
        window_kwargs: dict[str, Any] = {
            "window_seconds": settings.rate_limit_window_seconds,
            "max_entries": settings.rate_limit_max_entries,
        }
        if clock is not None:
            window_kwargs["clock"] = clock

        ledger = QuotaLedger()
        gate = AdmissionGate(ledger, settings.free_trial_limit)
        caller = UpstreamCaller(timeout=build_timeout(settings))

        return cls(
            settings=settings,
            ledger=ledger,
            gate=gate,
            caller=caller,
            gemini=ProxyEndpoint(
                "gemini",
                RateWindow(settings.gemini_rate_limit_per_window, **window_kwargs),
                gate,
                caller,
            ),
            search=ProxyEndpoint(
                "search",
                RateWindow(settings.search_rate_limit_per_window, **window_kwargs),
                gate,
                caller,
            ),
        )
