"""Shared error handling utilities for API endpoints.

Catalog endpoints answer every failure with the same envelope as success,
so these helpers build failure results rather than raising ``HTTPException``.
"""

from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

from app.models.catalog import Envelope

from .cache_protocols import CACHE_STATUS_HEADER


def error_response(
    status_code: int,
    message: str,
    *,
    debug: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Create a failure envelope response.

    Args:
        status_code: HTTP status to send.
        message: Short, user-safe description of the failure.
        debug: Diagnostics attached outside production.
        headers: Extra response headers.

    Returns:
        A JSONResponse carrying the envelope and ``X-Cache-Status: error``.
    """
    return JSONResponse(
        content=Envelope.fail(message, debug=debug).to_content(),
        status_code=status_code,
        headers={CACHE_STATUS_HEADER: "error", **(headers or {})},
    )


def invalid_request_response(
    message: str, *, debug: dict[str, Any] | None = None
) -> JSONResponse:
    """Create a standardized HTTP 400 envelope for rejected input."""
    return error_response(status.HTTP_400_BAD_REQUEST, message, debug=debug)


__all__ = ["error_response", "invalid_request_response"]
