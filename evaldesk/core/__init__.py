"""
Core utilities and configuration for evaldesk.

This package provides core functionality including logging configuration,
domain enumerations, database setup, and other shared utilities.
"""

from evaldesk.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
