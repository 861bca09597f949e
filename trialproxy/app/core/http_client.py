"""Shared HTTP client management for upstream calls.

The client is opened by the application lifespan and shared by every
upstream call so connections to the upstream hosts are pooled.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx

from trialproxy.app.core.config import Settings, settings as default_settings


def build_timeout(settings: Settings) -> httpx.Timeout:
    """Bounded timeout for a single upstream call.

    The connect phase has its own, shorter budget; read, write and pool
    acquisition share the overall upstream timeout.
    """
    return httpx.Timeout(
        settings.upstream_timeout_seconds,
        connect=settings.upstream_connect_timeout_seconds,
    )


def build_limits(settings: Settings) -> httpx.Limits:
    return httpx.Limits(
        max_connections=settings.httpx_max_connections,
        max_keepalive_connections=settings.httpx_max_keepalive_connections,
        keepalive_expiry=settings.httpx_keepalive_expiry,
    )


@asynccontextmanager
async def init_http_client(
    settings: Optional[Settings] = None,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Open the shared HTTP client and close it on exit.

    Intended for the FastAPI lifespan:

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with init_http_client(settings) as client:
                yield
    """
    settings = settings or default_settings
    client = httpx.AsyncClient(
        timeout=build_timeout(settings),
        limits=build_limits(settings),
    )
    try:
        yield client
    finally:
        await client.aclose()
