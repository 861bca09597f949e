"""Admission control, upstream calling and proxy orchestration."""

from trialproxy.app.services.admission import (
    AdmissionDecision,
    AdmissionGate,
    Allowed,
    MissingIdentity,
    QuotaExhausted,
    RateLimited,
)
from trialproxy.app.services.proxy import ProxyEndpoint, ProxyState
from trialproxy.app.services.quota_ledger import QuotaLedger
from trialproxy.app.services.rate_window import RateWindow, RateWindowResult
from trialproxy.app.services.upstream import (
    TransportFailure,
    UpstreamCaller,
    UpstreamFailure,
    UpstreamRequest,
    UpstreamResult,
    UpstreamSuccess,
)

__all__ = [
    "AdmissionDecision",
    "AdmissionGate",
    "Allowed",
    "MissingIdentity",
    "QuotaExhausted",
    "RateLimited",
    "ProxyEndpoint",
    "ProxyState",
    "QuotaLedger",
    "RateWindow",
    "RateWindowResult",
    "TransportFailure",
    "UpstreamCaller",
    "UpstreamFailure",
    "UpstreamRequest",
    "UpstreamResult",
    "UpstreamSuccess",
]
