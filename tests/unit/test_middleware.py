"""Unit tests for the correlation ID middleware."""

import uuid

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from happenings_engine.api.middleware import correlation_id_middleware, get_request_id, request_id_var

pytestmark = pytest.mark.unit


async def _echo_request_id(request: web.Request) -> web.Response:
    return web.json_response({"context": get_request_id(), "request": request["correlation_id"]})


@pytest.fixture
async def client():
    """Test client for an app with only the middleware and an echo route."""
    app = web.Application(middlewares=[correlation_id_middleware])
    app.router.add_get("/echo", _echo_request_id)
    async with TestClient(TestServer(app)) as test_client:
        yield test_client


class TestCorrelationIdMiddleware:
    """Tests for correlation_id_middleware."""

    async def test_uses_client_request_id(self, client):
        """Test X-Request-ID from the client is propagated."""
        resp = await client.get("/echo", headers={"X-Request-ID": "abc-123"})
        body = await resp.json()
        assert resp.headers["X-Request-ID"] == "abc-123"
        assert body == {"context": "abc-123", "request": "abc-123"}

    async def test_falls_back_to_correlation_id(self, client):
        """Test X-Correlation-ID is used when X-Request-ID is absent."""
        resp = await client.get("/echo", headers={"X-Correlation-ID": "corr-9"})
        assert resp.headers["X-Request-ID"] == "corr-9"

    async def test_generates_uuid(self, client):
        """Test a UUID is generated when the client sends none."""
        resp = await client.get("/echo")
        uuid.UUID(resp.headers["X-Request-ID"])


class TestGetRequestId:
    """Tests for get_request_id()."""

    def test_placeholder_outside_request(self):
        """Test the placeholder when no request ID is set."""
        token = request_id_var.set("")
        try:
            assert get_request_id() == "no-request-id"
        finally:
            request_id_var.reset(token)
