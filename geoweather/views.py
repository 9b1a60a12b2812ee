"""Local weather API endpoint.

Clients post the position updates their platform produced (fixes and
errors, each with a delivery offset). The server replays them through the
acquisition pipeline and answers with the terminal state.
Responses: wrapped by `config.api.responses` (status/message/data/errors).
"""

from __future__ import annotations

import logging

from asgiref.sync import async_to_sync
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from config.api.openapi import (
    error_envelope_serializer,
    success_envelope_serializer,
)
from config.api.responses import error_response, success_response

from .engines.types import Ready
from .pipeline import WeatherPipeline
from .serializers import (
    LocalWeatherRequestSerializer,
    ReadyStateSerializer,
    serialize_state,
    to_timed_events,
)
from .sources import ReplayPositionSource

logger = logging.getLogger(__name__)

local_success_schema = success_envelope_serializer(
    "LocalWeatherSuccess",
    data=ReadyStateSerializer(),
)
local_error_schema = error_envelope_serializer("LocalWeatherError")


def build_pipeline(
    source: ReplayPositionSource, *, threshold_m: float, deadline_s: float
) -> WeatherPipeline:
    return WeatherPipeline(
        source, threshold_m=threshold_m, deadline_s=deadline_s
    )


class LocalWeatherView(APIView):
    """Resolve a position stream into current weather plus a 24h forecast.

    Response: success envelope with `state="ready"`, `weather` and
    `forecast`; pipeline failures answer 422 with the state message.
    """

    @extend_schema(
        request=LocalWeatherRequestSerializer,
        responses={
            200: local_success_schema,
            400: local_error_schema,
            422: local_error_schema,
        },
    )
    def post(self, request: Request) -> Response:
        serializer = LocalWeatherRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        params = serializer.validated_data

        source = ReplayPositionSource(
            to_timed_events(params["events"]),
            close_when_exhausted=bool(params["end_of_stream"]),
        )
        pipeline = build_pipeline(
            source,
            threshold_m=float(params["threshold_m"]),
            deadline_s=float(params["deadline_s"]),
        )
        state = async_to_sync(pipeline.run)()
        payload = serialize_state(state)
        if isinstance(state, Ready):
            return success_response(payload)

        message = str(payload.get("message") or "Weather is unavailable.")
        logger.info("geoweather.api.local_failed message=%s", message)
        return error_response(
            message,
            data=payload,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )
