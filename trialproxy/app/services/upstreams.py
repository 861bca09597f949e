"""Request builders for the two proxied upstreams.

Each builder validates the client payload, checks that the server holds
the credentials the upstream needs, and returns the outbound request.
Both checks happen before anything is sent.
"""

from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from trialproxy.app.core.config import Settings
from trialproxy.app.core.logging import get_logger
from trialproxy.app.exceptions import (
    InvalidRequestError,
    MissingRequestFieldError,
    ServerConfigurationError,
)
from trialproxy.app.services.upstream import UpstreamRequest

logger = get_logger(__name__)

# Minimal response projection for image search results
SEARCH_FIELDS = "items(link,image/thumbnailLink,displayLink,image/contextLink),searchInformation"
SEARCH_RESULTS_PER_PAGE = 10
# The search API serves at most 100 results: start + num must stay <= 101.
SEARCH_MAX_START_INDEX = 101 - SEARCH_RESULTS_PER_PAGE


class SearchPayload(BaseModel):
    """Image search parameters supplied by the client."""
    query: str | None = None
    startIndex: int | None = Field(default=None, ge=1, le=SEARCH_MAX_START_INDEX)

    @field_validator("startIndex", mode="before")
    @classmethod
    def default_start_index(cls, v: Any) -> Any:
        # 0, "" and other falsy values mean the first page
        return v or None


def build_gemini_request(settings: Settings, gemini_payload: Any) -> UpstreamRequest:
    """Build the generateContent call; the payload is forwarded untouched.

    Raises:
        MissingRequestFieldError: Payload absent or not a JSON object
        ServerConfigurationError: GEMINI_API_KEY not set
    """
    if not isinstance(gemini_payload, dict):
        raise MissingRequestFieldError("Missing Gemini payload in request body")

    if not settings.gemini_configured:
        logger.error("Server is missing Gemini API Key", extra={"upstream": "gemini"})
        raise ServerConfigurationError()

    base_url = settings.gemini_base_url.rstrip("/")
    return UpstreamRequest(
        url=f"{base_url}/models/{settings.gemini_model}:generateContent",
        method="POST",
        headers={"Content-Type": "application/json"},
        body=gemini_payload,
        params={"key": settings.gemini_api_key},
    )


def build_search_request(settings: Settings, search_payload: Any) -> UpstreamRequest:
    """Build the image search call with a fixed result projection.

    Raises:
        MissingRequestFieldError: Query absent or blank
        InvalidRequestError: Wrong field types or startIndex out of range
        ServerConfigurationError: SEARCH_API_KEY or CX_ID not set
    """
    if not isinstance(search_payload, dict):
        raise MissingRequestFieldError("Missing search query in request body")

    try:
        payload = SearchPayload.model_validate(search_payload)
    except ValidationError:
        raise InvalidRequestError("Invalid search payload")

    if not payload.query or not payload.query.strip():
        raise MissingRequestFieldError("Missing search query in request body")

    if not settings.search_configured:
        logger.error("Server is missing Search API Key or CX ID", extra={"upstream": "search"})
        raise ServerConfigurationError()

    return UpstreamRequest(
        url=settings.search_base_url,
        method="GET",
        params={
            "key": settings.search_api_key,
            "cx": settings.cx_id,
            "q": payload.query,
            "searchType": "image",
            "imgSize": "large",
            "num": SEARCH_RESULTS_PER_PAGE,
            "start": payload.startIndex or 1,
            "fields": SEARCH_FIELDS,
        },
    )
