"""Shared fixtures: settings with test credentials, a controllable clock,
an application built from both, and a mocked upstream router."""

import pytest
import respx
from fastapi.testclient import TestClient

from trialproxy.app.core.config import Settings
from trialproxy.app.main import create_app

GEMINI_URL = (
    "https://generativelanguage.googleapis.com/v1beta"
    "/models/gemini-1.5-flash-latest:generateContent"
)
SEARCH_URL = "https://www.googleapis.com/customsearch/v1"

RATE_LIMIT_MESSAGE = "Too many requests, please try again after a minute."
QUOTA_MESSAGE = (
    "Free trial limit reached. "
    "Please add your own API key in the settings to continue."
)
TRANSPORT_MESSAGE = "An error occurred on the proxy server."


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> Settings:
    values = {
        "gemini_api_key": "test-gemini-key",
        "search_api_key": "test-search-key",
        "cx_id": "test-cx",
        "free_trial_limit": 20,
        "rate_limit_window_seconds": 60,
        "gemini_rate_limit_per_window": 10,
        "search_rate_limit_per_window": 5,
        "cors_origins": ["*"],
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def app(settings, clock):
    return create_app(settings, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def upstream():
    """Mocked upstream hosts; unmatched outbound calls fail."""
    with respx.mock(assert_all_called=False) as router:
        yield router
