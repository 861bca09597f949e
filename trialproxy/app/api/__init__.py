"""API endpoints package for the proxy."""

from trialproxy.app.api.proxy import router as proxy_router

__all__ = [
    "proxy_router",
]
