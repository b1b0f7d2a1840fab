"""
Unit tests for server exception handlers.

Tests cover the JSON error shape of expected failures (``ApiError``,
framework HTTP errors, validation and integrity errors) and the global
handler for unexpected exceptions.
"""

import json
from unittest.mock import Mock, patch

import pytest
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError

from evaldesk.server.errors import ApiError, bad_request, not_found, unauthorized
from evaldesk.server.exception_handlers import setup_exception_handlers
from evaldesk.server.exception_handlers.global_handler import global_exception_handler
from evaldesk.server.exception_handlers.http_handler import http_exception_handler


@pytest.fixture
def mock_request():
    """Create a mock request object."""
    request = Mock(spec=Request)
    request.method = "GET"
    request.url.path = "/api/v1/test"
    request.query_params = {}
    request.client = Mock()
    request.client.host = "127.0.0.1"
    return request


class TestApiError:
    """Test suite for the API error type."""

    def test_content_without_id(self):
        """Test that the id is omitted when not set."""
        assert bad_request("Invalid").to_content() == {"type": "error", "message": "Invalid"}

    def test_content_with_id_and_type(self):
        """Test that the machine id and the severity type are rendered."""
        error = unauthorized("Not on the list", error_id="access-list", error_type="info")
        assert error.status_code == 401
        assert error.to_content() == {"type": "info", "message": "Not on the list", "id": "access-list"}

    def test_detail_carries_message(self):
        """Test that the HTTPException detail is the message."""
        assert not_found("Evaluation not found").detail == "Evaluation not found"


class TestHttpExceptionHandler:
    """Test suite for the HTTP error handler."""

    @pytest.mark.asyncio
    async def test_api_error(self, mock_request):
        """Test that an ApiError keeps its status, type and id."""
        response = await http_exception_handler(
            mock_request, ApiError(410, "Evaluation data has been purged.", error_type="info", error_id="evaluation-purged")
        )

        assert response.status_code == 410
        assert json.loads(response.body.decode()) == {
            "type": "info",
            "message": "Evaluation data has been purged.",
            "id": "evaluation-purged",
        }

    @pytest.mark.asyncio
    async def test_plain_http_exception(self, mock_request):
        """Test that a framework HTTP exception maps its detail to the message."""
        response = await http_exception_handler(mock_request, HTTPException(status_code=405, detail="Method Not Allowed"))

        assert response.status_code == 405
        assert json.loads(response.body.decode()) == {"type": "error", "message": "Method Not Allowed"}


class TestGlobalExceptionHandler:
    """Test suite for global exception handler."""

    @pytest.mark.asyncio
    async def test_exception_handler_logs_error(self, mock_request):
        """Test that exception handler logs errors."""
        exc = ValueError("Test error")

        with patch("evaldesk.server.exception_handlers.global_handler.logger") as mock_logger:
            await global_exception_handler(mock_request, exc)

            mock_logger.error.assert_called_once()
            call_args = mock_logger.error.call_args
            assert "Unhandled exception" in call_args[0][0]
            assert call_args[1]["extra"]["error_type"] == "ValueError"
            assert call_args[1]["extra"]["path"] == "/api/v1/test"

    @pytest.mark.asyncio
    async def test_exception_handler_returns_500_json(self, mock_request):
        """Test that exception handler returns a 500 JSON response."""
        exc = RuntimeError("Test error")

        with patch("evaldesk.server.exception_handlers.global_handler.logger"):
            response = await global_exception_handler(mock_request, exc)

        assert isinstance(response, JSONResponse)
        assert response.status_code == 500
        body = json.loads(response.body.decode())
        assert body["type"] == "error"
        assert body["message"] == "Internal server error"
        assert body["error_type"] == "RuntimeError"
        assert body["error_id"] == id(exc)

    @pytest.mark.asyncio
    async def test_exception_handler_without_client(self, mock_request):
        """Test that a request without client information is handled."""
        mock_request.client = None

        with patch("evaldesk.server.exception_handlers.global_handler.logger") as mock_logger:
            response = await global_exception_handler(mock_request, KeyError("missing"))

        assert response.status_code == 500
        assert mock_logger.error.call_args[1]["extra"]["client"] == "unknown"


class Payload(BaseModel):
    count: int


@pytest.fixture
def app():
    """Create a small application with the handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/api-error")
    async def api_error():
        raise bad_request("Points exceed the maximum", error_id="points")

    @app.post("/validated")
    async def validated(payload: Payload):
        return payload

    @app.get("/integrity")
    async def integrity():
        raise IntegrityError("INSERT", {}, Exception("duplicate key"))

    @app.get("/boom")
    async def boom():
        raise RuntimeError("unexpected")

    return app


class TestSetupExceptionHandlers:
    """Test suite for the handlers registered on an application."""

    @pytest.mark.asyncio
    async def test_api_error_rendering(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api-error")

        assert response.status_code == 400
        assert response.json() == {"type": "error", "message": "Points exceed the maximum", "id": "points"}

    @pytest.mark.asyncio
    async def test_validation_error_is_400(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/validated", json={"count": "many"})

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Invalid request"
        assert body["errors"][0]["loc"] == ["body", "count"]

    @pytest.mark.asyncio
    async def test_integrity_error_is_409(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/integrity")

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_route_uses_error_shape(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/nowhere")

        assert response.status_code == 404
        assert response.json() == {"type": "error", "message": "Not Found"}

    @pytest.mark.asyncio
    async def test_unhandled_exception_is_500(self, app):
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            with patch("evaldesk.server.exception_handlers.global_handler.logger"):
                response = await client.get("/boom")

        assert response.status_code == 500
        assert response.json()["error_type"] == "RuntimeError"
