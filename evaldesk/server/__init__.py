"""
evaldesk Server Package.

This package contains the web server implementation of the evaluation platform.

Subpackages:
    api: FastAPI route definitions and endpoint logic.
    core: Configuration and constants.
    exception_handlers: Translation of errors into JSON responses.
    middleware: Request logging and timing.
    services: Business logic (authorization, phases, grading, purge, sandbox, events).
"""
