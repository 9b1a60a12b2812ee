from __future__ import annotations

from django.apps import AppConfig


class GeoweatherConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "geoweather"
    verbose_name = "Geo weather"
