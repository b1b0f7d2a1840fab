"""
Unit tests for the request logging middleware.

This test suite covers:
- Request/response processing with duration metrics
- ``X-Process-Time`` header injection
- Slow request detection
- Error logging for failing handlers
- Event streams passed through
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import Request
from starlette.responses import Response

from evaldesk.server.middleware import RequestLoggingMiddleware


def _request(method: str = "GET", path: str = "/api/v1/test", accept: str = "application/json"):
    request = AsyncMock(spec=Request)
    request.method = method
    request.url.path = path
    request.headers = {"accept": accept}
    request.state = MagicMock()
    return request


class TestRequestLoggingMiddlewareDispatch:
    """Test RequestLoggingMiddleware.dispatch method."""

    @pytest.mark.asyncio
    async def test_successful_request_is_logged(self):
        """Test that middleware processes and records successful requests."""

        async def call_next(request):
            return Response(content="ok", status_code=201)

        middleware = RequestLoggingMiddleware(app=AsyncMock())

        with patch("evaldesk.server.middleware.request_logging_middleware.log_api_request") as mock_log:
            response = await middleware.dispatch(_request("POST", "/api/v1/groups"), call_next)

        assert response.status_code == 201
        assert float(response.headers["X-Process-Time"]) >= 0
        kwargs = mock_log.call_args.kwargs
        assert (kwargs["method"], kwargs["path"], kwargs["status_code"]) == ("POST", "/api/v1/groups", 201)
        assert kwargs["duration_ms"] >= 0

    @pytest.mark.asyncio
    async def test_slow_request_warns(self):
        """Test that requests above the threshold are logged as slow."""

        async def call_next(request):
            return Response(status_code=200)

        middleware = RequestLoggingMiddleware(app=AsyncMock())

        with (
            patch("evaldesk.server.middleware.request_logging_middleware.SLOW_REQUEST_MS", -1),
            patch("evaldesk.server.middleware.request_logging_middleware.log_api_request"),
            patch("evaldesk.server.middleware.request_logging_middleware.logger") as mock_logger,
        ):
            await middleware.dispatch(_request(), call_next)

        mock_logger.warning.assert_called_once()
        assert "Slow API request" in mock_logger.warning.call_args[0][0]

    @pytest.mark.asyncio
    async def test_failing_handler_is_logged_and_reraised(self):
        """Test that exceptions are recorded as 500 and propagate."""

        async def call_next(request):
            raise RuntimeError("handler failed")

        middleware = RequestLoggingMiddleware(app=AsyncMock())

        with (
            patch("evaldesk.server.middleware.request_logging_middleware.log_api_request") as mock_log,
            patch("evaldesk.server.middleware.request_logging_middleware.logger") as mock_logger,
        ):
            with pytest.raises(RuntimeError):
                await middleware.dispatch(_request(), call_next)

        assert mock_log.call_args.kwargs["status_code"] == 500
        assert mock_logger.error.call_args.kwargs["extra"]["error"] == "handler failed"

    @pytest.mark.asyncio
    async def test_event_streams_pass_through(self):
        """Test that server-sent event requests are neither timed nor logged."""
        response = Response(status_code=200)

        async def call_next(request):
            return response

        middleware = RequestLoggingMiddleware(app=AsyncMock())

        with patch("evaldesk.server.middleware.request_logging_middleware.log_api_request") as mock_log:
            result = await middleware.dispatch(_request(accept="text/event-stream"), call_next)

        assert result is response
        assert "X-Process-Time" not in result.headers
        mock_log.assert_not_called()
