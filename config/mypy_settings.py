from __future__ import annotations

import os

# ---- Safe defaults so importing config.settings
# won't explode during mypy ----
os.environ.setdefault("DJANGO_SECRET_KEY", "mypy-only-not-for-prod")
os.environ.setdefault("DJANGO_SQLITE_PATH", "mypy.sqlite3")
os.environ.setdefault("OPENWEATHER_API_KEY", "mypy-only-key")

from .settings import *  # noqa: F401,F403

# Optional hard overrides for mypy environment:
DEBUG = False
USE_TZ = True
