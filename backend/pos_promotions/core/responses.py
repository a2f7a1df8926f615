"""Standardized API response helpers.

Every endpoint returns the same envelope:
    {"success": <bool>, "message": <str>, "data": <payload or null>, "errors": [<str>, ...]}

Route handlers build successful responses with ``success_response()``.
Failures raised as exceptions are turned into ``error_response()`` bodies by
the exception handlers registered in ``pos_promotions.main``, so handlers
never have to assemble an error envelope themselves except where the
payload must travel with the failure (for example a rejected promotion
application, which still returns the validation result).
"""

from typing import Any, List, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(data: Any = None, message: str = "") -> dict:
    """Wrap a payload in the success envelope.

    Args:
        data: The serialized payload (dict, list, pydantic model or None).
        message: Optional human-readable message.

    Returns:
        {"success": True, "message": message, "data": data, "errors": []}
    """
    return {
        "success": True,
        "message": message,
        "data": data,
        "errors": [],
    }


def error_response(
    message: str,
    errors: Optional[List[str]] = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
    data: Any = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    """Build a failure envelope as a ready-to-return JSONResponse.

    Args:
        message: Human-readable summary shown to the user.
        errors: Individual error strings (defaults to ``[message]``).
        status_code: HTTP status of the response.
        data: Optional payload that accompanies the failure.
        headers: Extra response headers (e.g. WWW-Authenticate).

    Returns:
        JSONResponse with {"success": False, "message", "data", "errors"}
    """
    body = {
        "success": False,
        "message": message,
        "data": data,
        "errors": errors if errors is not None else [message],
    }
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body),
        headers=headers,
    )
