"""JSON envelope helpers shared by every API view.

Envelope shape: ``{"status": 0|1, "message": str, "data": ..., "errors": ...}``
where ``status`` 0 means success.
"""

from __future__ import annotations

from typing import TypeAlias

from rest_framework import status
from rest_framework.response import Response

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

STATUS_OK = 0
STATUS_FAILED = 1


def _envelope(
    flag: int,
    message: str,
    data: JSONValue | None,
    errors: JSONValue | None,
) -> dict[str, JSONValue]:
    return {
        "status": flag,
        "message": message,
        "data": data,
        "errors": errors,
    }


def success_response(
    data: JSONValue | None,
    message: str = "OK",
    *,
    status_code: int = status.HTTP_200_OK,
) -> Response:
    return Response(
        _envelope(STATUS_OK, message, data, None), status=status_code
    )


def error_response(
    message: str,
    *,
    data: JSONValue | None = None,
    errors: JSONValue | None = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    return Response(
        _envelope(STATUS_FAILED, message, data, errors), status=status_code
    )
