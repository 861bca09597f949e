"""Single-attempt upstream caller.

Every outcome of an outbound call is returned as a value: a 2xx answer,
a non-2xx answer with its body kept byte for byte, or a transport failure.
Nothing is retried and nothing is raised.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping, Optional, Union

import httpx

from trialproxy.app.core.logging import get_log_context, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class UpstreamRequest:
    """Everything needed to issue one outbound call."""
    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[Any] = None
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UpstreamSuccess:
    status_code: int
    content: bytes
    media_type: Optional[str] = None


@dataclass(frozen=True)
class UpstreamFailure:
    status_code: int
    content: bytes
    media_type: Optional[str] = None


@dataclass(frozen=True)
class TransportFailure:
    cause: BaseException


UpstreamResult = Union[UpstreamSuccess, UpstreamFailure, TransportFailure]


def _loggable_url(url: str) -> str:
    # Credentials travel as query parameters; never log them.
    return url.split("?", 1)[0]


class UpstreamCaller:
    """Issues exactly one call per admitted request.

    The application lifespan attaches a shared client for connection pooling.
    Without one, each call opens and closes its own client.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[httpx.Timeout] = None,
    ):
        self.http_client = http_client
        self.timeout = timeout or httpx.Timeout(30.0, connect=10.0)

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http_client is not None:
            yield self.http_client
            return
        client = httpx.AsyncClient(timeout=self.timeout)
        try:
            yield client
        finally:
            await client.aclose()

    async def call(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[Any] = None,
        params: Optional[Mapping[str, Any]] = None,
        upstream: Optional[str] = None,
    ) -> UpstreamResult:
        """Send one request and classify the outcome.

        Args:
            url: Upstream URL
            method: HTTP method
            headers: Extra request headers
            body: JSON-serializable request body, sent only when not None
            params: Query parameters
            upstream: Upstream name used in log context

        Returns:
            UpstreamSuccess for 2xx, UpstreamFailure for any other status,
            TransportFailure when no response was received
        """
        context = get_log_context(upstream=upstream, url=_loggable_url(url), method=method)
        kwargs: dict[str, Any] = {"headers": dict(headers or {}), "params": dict(params or {})}
        if body is not None:
            kwargs["json"] = body

        try:
            async with self._client_context() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Upstream call timed out: {type(e).__name__}", extra=context)
            return TransportFailure(cause=e)
        except httpx.HTTPError as e:
            logger.warning(f"Upstream call failed: {type(e).__name__}: {e}", extra=context)
            return TransportFailure(cause=e)
        except Exception as e:
            logger.exception("Unexpected error during upstream call", extra=context)
            return TransportFailure(cause=e)

        media_type = response.headers.get("content-type")
        if response.is_success:
            return UpstreamSuccess(
                status_code=response.status_code,
                content=response.content,
                media_type=media_type,
            )

        logger.warning(
            f"Upstream returned status {response.status_code}",
            extra={**context, "status_code": response.status_code},
        )
        return UpstreamFailure(
            status_code=response.status_code,
            content=response.content,
            media_type=media_type,
        )

    async def send(self, request: UpstreamRequest, upstream: Optional[str] = None) -> UpstreamResult:
        """Call the upstream described by an UpstreamRequest."""
        return await self.call(
            request.url,
            method=request.method,
            headers=request.headers,
            body=request.body,
            params=request.params,
            upstream=upstream,
        )
