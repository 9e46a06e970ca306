"""
Development settings for the Piracy Scan Engine service.

Local SQLite, database cache, smaller scan budgets and the AI filter off
unless asked for.
"""

import os
from .base import *

DEBUG = True

ALLOWED_HOSTS = ["localhost", "127.0.0.1"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "db.sqlite3",
    }
}

# No Redis needed for the cache locally
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.db.DatabaseCache",
        "LOCATION": "scan_engine_cache",
    }
}

# Run scans inline with CELERY_TASK_ALWAYS_EAGER=True when no worker is up
CELERY_TASK_ALWAYS_EAGER = os.getenv("CELERY_TASK_ALWAYS_EAGER", "False") == "True"

LOGGING["loggers"]["django"]["level"] = "INFO"
LOGGING["loggers"]["scan_engine"]["level"] = "DEBUG"

INTERNAL_IPS = ["127.0.0.1"]

AUTH_PASSWORD_VALIDATORS = []

# Smaller runs while iterating locally
SCAN_SEARCH_BUDGET = int(os.getenv("SCAN_SEARCH_BUDGET", "30"))
SCAN_AI_FILTER_ENABLED = os.getenv("SCAN_AI_FILTER_ENABLED", "False") == "True"
