"""
Middleware components for the evaldesk server.
"""

from .request_logging_middleware import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
