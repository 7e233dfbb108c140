"""
Standardized error responses for the ShareHub API.

Every error leaves the API as {"error": {"message": ..., "code": ...}}.
Core exceptions are translated here and nowhere else.
"""

from __future__ import annotations

from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

from sharehub.core.errors import (
    AccessDeniedError,
    DenyReason,
    NotFoundError,
    ShareHubError,
    StorageError,
    ValidationError,
)
from sharehub.logging.setup import get_logger

logger = get_logger(__name__)


def error_response(
    message: str,
    details: list[str] | None = None,
    field: str | None = None,
    code: str | None = None
) -> dict[str, Any]:
    """
    Create a standardized error body.

    Args:
        message: Human-readable error summary
        details: List of specific error details (optional)
        field: Field name that caused the error (optional)
        code: Error code for programmatic handling (optional)

    Returns:
        Standardized error response dictionary

    Examples:
        >>> error_response("Folder name is required", code="VALIDATION_ERROR")
        {'error': {'message': 'Folder name is required', 'code': 'VALIDATION_ERROR'}}
    """
    error_dict: dict[str, Any] = {"message": message}

    if details is not None:
        error_dict["details"] = details

    if field is not None:
        error_dict["field"] = field

    if code is not None:
        error_dict["code"] = code

    return {"error": error_dict}


def error_json(
    message: str,
    status_code: int = status.HTTP_400_BAD_REQUEST,
    details: list[str] | None = None,
    field: str | None = None,
    code: str | None = None
) -> JSONResponse:
    """Wrap error_response() in a JSONResponse."""
    return JSONResponse(
        status_code=status_code,
        content=error_response(message, details, field, code)
    )


def validation_error(
        message: str, details: list[str] | None = None,
        field: str | None = None) -> JSONResponse:
    return error_json(
        message,
        status_code=status.HTTP_400_BAD_REQUEST,
        details=details,
        field=field,
        code="VALIDATION_ERROR"
    )


def authentication_error(message: str = "Authentication required") -> JSONResponse:
    return error_json(
        message,
        status_code=status.HTTP_401_UNAUTHORIZED,
        code="AUTHENTICATION_FAILED"
    )


def method_not_allowed(method: str, allowed: list[str]) -> JSONResponse:
    response = error_json(
        f"Method {method} not allowed",
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        code="METHOD_NOT_ALLOWED"
    )
    response.headers["Allow"] = ", ".join(allowed)
    return response


def server_error(message: str = "Internal server error") -> JSONResponse:
    return error_json(
        message,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="SERVER_ERROR"
    )


def error_from_exception(exc: ShareHubError) -> JSONResponse:
    """
    Translate a core exception into an HTTP error response.

    Access denials are reported generically. The one sub-reason revealed
    is a bad or missing password, so clients know to prompt for one.
    """
    if isinstance(exc, ValidationError):
        return validation_error(str(exc), field=exc.field)

    if isinstance(exc, NotFoundError):
        return error_json(
            str(exc),
            status_code=status.HTTP_404_NOT_FOUND,
            code="NOT_FOUND"
        )

    if isinstance(exc, AccessDeniedError):
        if exc.reason == DenyReason.BAD_PASSWORD:
            return error_json(
                "Password required",
                status_code=status.HTTP_401_UNAUTHORIZED,
                code="BAD_PASSWORD"
            )
        return error_json(
            "Access denied",
            status_code=status.HTTP_403_FORBIDDEN,
            code="ACCESS_DENIED"
        )

    if isinstance(exc, StorageError):
        logger.error(f"Storage failure: {exc}")
        return error_json(
            "Storage operation failed",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="STORAGE_ERROR"
        )

    logger.error(f"Unhandled core error: {exc}")
    return server_error()
