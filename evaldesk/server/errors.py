"""
API error type.

Routes and services raise ``ApiError`` for every expected failure. The
exception handlers render it as ``{"message", "type", "id"}`` so that clients
can branch on the machine ``id`` (e.g. ``access-list``) while showing the
human ``message``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, status


class ApiError(HTTPException):
    """HTTP error carrying a message, a severity type and an optional machine id."""

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        error_type: str = "error",
        error_id: Optional[str] = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.error_type = error_type
        self.error_id = error_id

    def to_content(self) -> dict:
        content = {"type": self.error_type, "message": self.message}
        if self.error_id:
            content["id"] = self.error_id
        return content


def bad_request(message: str, error_id: Optional[str] = None) -> ApiError:
    return ApiError(status.HTTP_400_BAD_REQUEST, message, error_id=error_id)


def unauthorized(message: str, error_id: Optional[str] = None, error_type: str = "error") -> ApiError:
    return ApiError(status.HTTP_401_UNAUTHORIZED, message, error_id=error_id, error_type=error_type)


def forbidden(message: str) -> ApiError:
    return ApiError(status.HTTP_403_FORBIDDEN, message)


def not_found(message: str) -> ApiError:
    return ApiError(status.HTTP_404_NOT_FOUND, message)


def conflict(message: str) -> ApiError:
    return ApiError(status.HTTP_409_CONFLICT, message)
