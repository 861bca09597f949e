"""Custom exceptions for the proxy application."""

from typing import Mapping, Optional


class ProxyError(Exception):
    """Base class for proxy exceptions with HTTP status code.

    All custom exceptions inherit from this class and define their
    specific status_code. A single exception handler renders them as
    ``{"error": message}`` with the status code and any extra headers.
    """
    status_code: int = 500
    default_message: str = "Proxy error"

    def __init__(
        self,
        message: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.message = message or self.default_message
        self.headers = dict(headers or {})
        super().__init__(self.message)


class MissingIdentityError(ProxyError):
    """Raised when the request carries no usable user ID.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    default_message = "Missing user ID."


class InvalidRequestError(ProxyError):
    """Raised when the request body cannot be used as given.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    default_message = "Invalid request body"


class MissingRequestFieldError(InvalidRequestError):
    """Raised when a field the endpoint requires is absent or empty."""


class RateLimitedError(ProxyError):
    """Raised when a user exceeded the requests allowed in the current window.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    default_message = "Too many requests, please try again after a minute."


class QuotaExhaustedError(ProxyError):
    """Raised when a user has used up the free trial allowance.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    default_message = (
        "Free trial limit reached. "
        "Please add your own API key in the settings to continue."
    )

    def __init__(
        self,
        used: int = 0,
        limit: int = 0,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.used = used
        self.limit = limit
        super().__init__(headers=headers)


class ServerConfigurationError(ProxyError):
    """Raised when server-side upstream credentials are missing.

    Detected before dispatch. Maps to HTTP 500.
    """
    status_code = 500
    default_message = "Server configuration error."


class UpstreamTransportError(ProxyError):
    """Raised when the upstream could not be reached or did not answer in time.

    The message never carries the underlying cause. Maps to HTTP 500.
    """
    status_code = 500
    default_message = "An error occurred on the proxy server."
