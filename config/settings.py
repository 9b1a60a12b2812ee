"""Django settings for the geoweather project.

Every deployment-specific value is read from the environment so the same
module serves local development, tests and production.
"""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    return float(raw)


SECRET_KEY = os.environ.get(
    "DJANGO_SECRET_KEY", "dev-only-insecure-secret-key-change-me"
)
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get(
        "DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver"
    ).split(",")
    if host.strip()
]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django_prometheus",
    "rest_framework",
    "drf_spectacular",
    "geoweather",
]

MIDDLEWARE = [
    "django_prometheus.middleware.PrometheusBeforeMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django_prometheus.middleware.PrometheusAfterMiddleware",
]

ROOT_URLCONF = "config.urls"
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {"context_processors": []},
    }
]
WSGI_APPLICATION = "config.wsgi.application"
ASGI_APPLICATION = "config.asgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get(
            "DJANGO_SQLITE_PATH", str(BASE_DIR / "db.sqlite3")
        ),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "EXCEPTION_HANDLER": "config.api.exceptions.custom_exception_handler",
}

SPECTACULAR_SETTINGS = {
    "TITLE": "geoweather",
    "DESCRIPTION": "Location-driven current weather and 24h forecast.",
    "VERSION": "1.0.0",
}

# ---- Weather providers ----
OPENWEATHER_API_KEY = os.environ.get("OPENWEATHER_API_KEY", "")
OPENWEATHER_BASE_URL = os.environ.get(
    "OPENWEATHER_BASE_URL", "https://api.openweathermap.org/data/2.5"
)
OPENCAGE_API_KEY = os.environ.get("OPENCAGE_API_KEY", "")
OPENCAGE_BASE_URL = os.environ.get(
    "OPENCAGE_BASE_URL", "https://api.opencagedata.com/geocode/v1/json"
)
WEATHER_LANG = os.environ.get("WEATHER_LANG", "ja")
WEATHER_DISPLAY_TZ = os.environ.get("WEATHER_DISPLAY_TZ", "Asia/Tokyo")
WEATHER_REQUEST_TIMEOUT_S = _env_float("WEATHER_REQUEST_TIMEOUT_S", 10.0)

# ---- Location acquisition ----
LOCATION_ACCURACY_THRESHOLD_M = _env_float(
    "LOCATION_ACCURACY_THRESHOLD_M", 100.0
)
LOCATION_DEADLINE_S = _env_float("LOCATION_DEADLINE_S", 15.0)
LOCATION_MAX_DEADLINE_S = _env_float("LOCATION_MAX_DEADLINE_S", 30.0)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "plain",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": os.environ.get("DJANGO_LOG_LEVEL", "INFO"),
    },
    "loggers": {
        "geoweather": {
            "handlers": ["console"],
            "level": os.environ.get("GEOWEATHER_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}
