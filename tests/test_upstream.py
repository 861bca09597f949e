"""Tests for the single-attempt upstream caller."""

import json

import httpx
import pytest
import respx
from httpx import Response

from trialproxy.app.services.upstream import (
    TransportFailure,
    UpstreamCaller,
    UpstreamFailure,
    UpstreamRequest,
    UpstreamSuccess,
    _loggable_url,
)

URL = "https://upstream.example.com/v1/run"


class TestUpstreamCaller:
    """Outcome classification for one outbound call."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_success_keeps_body_and_media_type(self):
        route = respx.post(URL).mock(
            return_value=Response(200, json={"ok": True})
        )
        caller = UpstreamCaller()

        result = await caller.call(URL, method="POST", body={"a": 1}, params={"key": "secret"})

        assert isinstance(result, UpstreamSuccess)
        assert result.status_code == 200
        assert json.loads(result.content) == {"ok": True}
        assert result.media_type == "application/json"
        assert route.call_count == 1
        sent = route.calls.last.request
        assert json.loads(sent.content) == {"a": 1}
        assert sent.url.params["key"] == "secret"

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_2xx_is_failure_with_raw_body(self):
        respx.get(URL).mock(
            return_value=Response(403, content=b"<html>denied</html>", headers={"content-type": "text/html"})
        )
        caller = UpstreamCaller()

        result = await caller.call(URL)

        assert isinstance(result, UpstreamFailure)
        assert result.status_code == 403
        assert result.content == b"<html>denied</html>"
        assert result.media_type == "text/html"

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_is_transport_failure(self):
        respx.get(URL).mock(side_effect=httpx.ReadTimeout("too slow"))
        caller = UpstreamCaller()

        result = await caller.call(URL)

        assert isinstance(result, TransportFailure)
        assert isinstance(result.cause, httpx.ReadTimeout)

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_error_is_transport_failure(self):
        respx.get(URL).mock(side_effect=httpx.ConnectError("refused"))
        caller = UpstreamCaller()

        result = await caller.call(URL)

        assert isinstance(result, TransportFailure)

    @pytest.mark.asyncio
    @respx.mock
    async def test_single_attempt_only(self):
        """A 503 is returned as is and never retried."""
        route = respx.get(URL).mock(return_value=Response(503, json={"error": "busy"}))
        caller = UpstreamCaller()

        result = await caller.call(URL)

        assert isinstance(result, UpstreamFailure)
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_uses_attached_client(self):
        respx.get(URL).mock(return_value=Response(200, json={}))
        async with httpx.AsyncClient() as client:
            caller = UpstreamCaller(http_client=client)
            result = await caller.call(URL)
            assert not client.is_closed

        assert isinstance(result, UpstreamSuccess)

    @pytest.mark.asyncio
    @respx.mock
    async def test_send_unpacks_request(self):
        route = respx.post(URL).mock(return_value=Response(200, json={}))
        caller = UpstreamCaller()
        request = UpstreamRequest(
            url=URL,
            method="POST",
            headers={"Content-Type": "application/json"},
            body={"contents": []},
            params={"key": "k"},
        )

        result = await caller.send(request, upstream="gemini")

        assert isinstance(result, UpstreamSuccess)
        sent = route.calls.last.request
        assert sent.headers["content-type"] == "application/json"
        assert sent.url.params["key"] == "k"

    @pytest.mark.asyncio
    @respx.mock
    async def test_get_without_body_sends_no_content(self):
        route = respx.get(URL).mock(return_value=Response(200, json={}))
        caller = UpstreamCaller()

        await caller.call(URL, params={"q": "cats"})

        sent = route.calls.last.request
        assert sent.content == b""
        assert sent.url.params["q"] == "cats"


def test_loggable_url_drops_query():
    assert _loggable_url("https://host/path?key=secret&q=x") == "https://host/path"
    assert _loggable_url("https://host/path") == "https://host/path"
