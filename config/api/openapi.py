"""drf-spectacular helpers for documenting the response envelope.

`config.api.responses` and the DRF exception handler wrap API responses in
one JSON envelope; these helpers build matching serializers for the schema.
"""

from __future__ import annotations

from drf_spectacular.utils import inline_serializer
from rest_framework import serializers
from rest_framework.serializers import Serializer


def _envelope_fields(
    data: serializers.Field,
) -> dict[str, serializers.Field]:
    return {
        "status": serializers.IntegerField(),
        "message": serializers.CharField(),
        "data": data,
        "errors": serializers.JSONField(allow_null=True),
    }


def success_envelope_serializer(
    name: str,
    *,
    data: serializers.Field,
) -> Serializer:
    """Build an OpenAPI schema matching `success_response`."""

    return inline_serializer(name=name, fields=_envelope_fields(data))


def error_envelope_serializer(
    name: str,
    *,
    data: serializers.Field | None = None,
) -> Serializer:
    """Build an OpenAPI schema matching `error_response`.

    ``data`` documents a payload that accompanies the failure, such as the
    terminal pipeline state.
    """

    return inline_serializer(
        name=name,
        fields=_envelope_fields(
            data
            if data is not None
            else serializers.JSONField(allow_null=True)
        ),
    )
