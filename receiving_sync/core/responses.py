"""Standardized API response helpers.

Every endpoint answers with an envelope carrying ``success``:
    {"success": true, ...payload}
    {"success": false, "error": "<message>", "code": "<error kind>"}
"""

from typing import Any

from fastapi.responses import JSONResponse

from receiving_sync.core.errors import ErrorKind


def ok_response(**payload: Any) -> dict:
    """Wrap a successful payload in the standard envelope."""
    return {"success": True, **payload}


def error_body(kind: ErrorKind, message: str) -> dict:
    return {"success": False, "error": message, "code": kind.value}


def error_response(kind: ErrorKind, message: str, status_code: int = None) -> JSONResponse:
    """Build the error envelope with the HTTP status matching ``kind``.

    Args:
        kind: Error category, used for the default status code.
        message: Human readable error, shown to the user by the client.
        status_code: Override for the HTTP status.

    Returns:
        JSONResponse with {"success": false, "error": message, "code": kind}
    """
    return JSONResponse(
        status_code=status_code or kind.status_code,
        content=error_body(kind, message),
    )
