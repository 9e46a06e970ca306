"""
Test settings for the Piracy Scan Engine service.

In-memory SQLite, eager Celery, and every outbound integration pointed
nowhere. Tests that need a provider inject an httpx.MockTransport.
"""

from .base import *

DEBUG = False

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "scan-engine-tests",
    }
}

# Tasks run inline; errors surface in the calling test
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

LOGGING["loggers"]["django"]["level"] = "WARNING"
LOGGING["loggers"]["scan_engine"]["level"] = "WARNING"

AUTH_PASSWORD_VALIDATORS = []
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

SENTRY_DSN = ""

# Providers
SERPAPI_API_KEY = "test-serpapi-key"
AI_COMPLETION_SERVICE_URL = ""
AI_COMPLETION_SERVICE_TOKEN = ""
SCAN_NOTIFICATION_WEBHOOK_URL = ""

# Scan pacing and timeouts
SCAN_MIN_CALL_DELAY_SECONDS = 0
SCAN_CALL_TIMEOUT_SECONDS = 2
SCAN_AI_FILTER_ENABLED = False
