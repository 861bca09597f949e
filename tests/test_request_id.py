"""Tests for request ID middleware."""

import uuid

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from trialproxy.app.middleware.request_id import (
    MAX_REQUEST_ID_LENGTH,
    RequestIdMiddleware,
    get_request_id,
)


class TestRequestIdMiddleware:
    """Test RequestIdMiddleware."""

    @pytest.fixture
    def app(self):
        app = FastAPI()
        app.add_middleware(RequestIdMiddleware)

        @app.get("/test")
        async def test_endpoint(request: Request):
            return {"request_id": get_request_id(request)}

        return app

    @pytest.fixture
    def client(self, app):
        return TestClient(app)

    def test_generates_request_id(self, client):
        """A request without X-Request-ID gets a fresh UUID."""
        response = client.get("/test")

        request_id = response.headers["X-Request-ID"]
        assert str(uuid.UUID(request_id)) == request_id
        assert response.json()["request_id"] == request_id

    def test_uses_existing_request_id(self, client):
        response = client.get("/test", headers={"X-Request-ID": "my-custom-request-id"})

        assert response.headers["X-Request-ID"] == "my-custom-request-id"
        assert response.json()["request_id"] == "my-custom-request-id"

    def test_replaces_overlong_request_id(self, client):
        long_id = "x" * (MAX_REQUEST_ID_LENGTH + 1)

        response = client.get("/test", headers={"X-Request-ID": long_id})

        assert response.headers["X-Request-ID"] != long_id

    def test_each_request_gets_its_own_id(self, client):
        first = client.get("/test").headers["X-Request-ID"]
        second = client.get("/test").headers["X-Request-ID"]
        assert first != second

    def test_custom_header_name(self):
        app = FastAPI()
        app.add_middleware(RequestIdMiddleware, header_name="X-Correlation-ID")

        @app.get("/test")
        async def test_endpoint(request: Request):
            return {"request_id": get_request_id(request)}

        response = TestClient(app).get("/test", headers={"X-Correlation-ID": "corr-1"})

        assert response.headers["X-Correlation-ID"] == "corr-1"
        assert response.json()["request_id"] == "corr-1"


def test_get_request_id_without_middleware():
    app = FastAPI()

    @app.get("/test")
    async def test_endpoint(request: Request):
        return {"request_id": get_request_id(request)}

    assert TestClient(app).get("/test").json() == {"request_id": "unknown"}
