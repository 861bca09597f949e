"""Proxy API endpoints.

Both routes read the caller identity from the JSON body and hand the rest
to the shared ProxyEndpoint; the upstream payload is never interpreted
beyond what is needed to build the outbound call.
"""

import json
from typing import Any

from fastapi import APIRouter, Depends, Request, Response

from trialproxy.app.exceptions import InvalidRequestError
from trialproxy.app.middleware.request_id import get_request_id
from trialproxy.app.services.proxy import ProxyState
from trialproxy.app.services.upstreams import build_gemini_request, build_search_request

router = APIRouter(prefix="/api")


def get_proxy_state(request: Request) -> ProxyState:
    """Get the application's proxy state as a FastAPI dependency."""
    return request.app.state.proxy


async def read_json_body(request: Request) -> dict[str, Any]:
    """Parse the request body as a JSON object.

    Raises:
        InvalidRequestError: Body is not valid JSON or not an object
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidRequestError("Invalid JSON in request body")
    if not isinstance(body, dict):
        raise InvalidRequestError("Invalid JSON in request body")
    return body


@router.post("/gemini-proxy", response_model=None)
async def gemini_proxy(
    request: Request,
    state: ProxyState = Depends(get_proxy_state),
) -> Response:
    """Forward a generateContent payload to Gemini.

    Body: ``{"userId": str, "geminiPayload": object}``. The payload is sent
    upstream as is; the upstream answer is relayed with its status code.
    """
    body = await read_json_body(request)
    return await state.gemini.handle(
        body.get("userId"),
        lambda: build_gemini_request(state.settings, body.get("geminiPayload")),
        request_id=get_request_id(request),
    )


@router.post("/search-proxy", response_model=None)
async def search_proxy(
    request: Request,
    state: ProxyState = Depends(get_proxy_state),
) -> Response:
    """Run an image search.

    Body: ``{"userId": str, "searchPayload": {"query": str, "startIndex"?: int}}``.
    Only links, thumbnails, display/context links and search metadata are
    requested from the upstream.
    """
    body = await read_json_body(request)
    return await state.search.handle(
        body.get("userId"),
        lambda: build_search_request(state.settings, body.get("searchPayload")),
        request_id=get_request_id(request),
    )
