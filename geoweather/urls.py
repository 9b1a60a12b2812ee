from __future__ import annotations

from django.urls import path

from .views import LocalWeatherView

urlpatterns = [
    path(
        "weather/local/",
        LocalWeatherView.as_view(),
        name="weather-local",
    ),
]
