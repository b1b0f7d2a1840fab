"""
HTTP Error Handlers.

Expected failures are rendered with the same JSON shape everywhere:
``{"type": "error" | "info", "message": str, "id"?: str}``.

- ``ApiError`` keeps its type and machine id.
- Plain ``HTTPException`` (raised by FastAPI or Starlette) maps its detail to
  the message.
- Request validation errors become 400 with the pydantic error list.
- Unique constraint violations that escape a router become 409.
"""

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from evaldesk.core.logging_config import get_logger
from evaldesk.server.errors import ApiError

logger = get_logger(__name__)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Render an HTTP error as a JSON message.

    Args:
        request: The HTTP request that failed
        exc: The raised HTTP exception (``ApiError`` or a framework exception)

    Returns:
        JSONResponse with the message body and the original status code
    """
    if isinstance(exc, ApiError):
        content = exc.to_content()
    else:
        content = {"type": "error", "message": str(exc.detail)}
    logger.debug(f"{request.method} {request.url.path} -> {exc.status_code}: {content['message']}")
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Render a request validation error as a 400.

    Args:
        request: The HTTP request that failed validation
        exc: The validation error

    Returns:
        JSONResponse with a message and the list of validation errors
    """
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"type": "error", "message": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """
    Render a database integrity error as a 409.

    Args:
        request: The HTTP request that violated a constraint
        exc: The integrity error raised by the driver

    Returns:
        JSONResponse with a conflict message
    """
    logger.warning(f"Integrity error in {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"type": "error", "message": "The request conflicts with existing data"},
    )
