"""
Production settings for the Piracy Scan Engine service.

PostgreSQL for scan runs and infringement records, Redis for the cache
and the Celery broker, HTTPS-only cookies.
"""

import os
from .base import *

DEBUG = False

ALLOWED_HOSTS = [host for host in os.getenv("ALLOWED_HOSTS", "").split(",") if host]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("DB_NAME", "scan_engine"),
        "USER": os.getenv("DB_USER", ""),
        "PASSWORD": os.getenv("DB_PASSWORD", ""),
        "HOST": os.getenv("DB_HOST", ""),
        "PORT": os.getenv("DB_PORT", "5432"),
        # Scan workers hold a connection for the whole run
        "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "300")),
        "OPTIONS": {
            "connect_timeout": 10,
        },
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.redis.RedisCache",
        "LOCATION": os.getenv("REDIS_URL", "redis://localhost:6379/2"),
        "KEY_PREFIX": "scan_engine",
    }
}

# Broker and results on their own Redis DB
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
CELERY_RESULT_EXPIRES = 24 * 60 * 60
# Re-deliver a scan if the worker dies mid-run
CELERY_TASK_ACKS_LATE = True
CELERY_TASK_REJECT_ON_WORKER_LOST = True

LOGGING["loggers"]["django"]["level"] = "WARNING"
LOGGING["loggers"]["scan_engine"]["level"] = os.getenv("LOG_LEVEL", "INFO")

SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = "DENY"
SECURE_HSTS_SECONDS = 31536000
SECURE_HSTS_INCLUDE_SUBDOMAINS = True
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "True") == "True"
CSRF_COOKIE_SECURE = SESSION_COOKIE_SECURE

# Slower provider pacing than the local default
SCAN_MIN_CALL_DELAY_SECONDS = float(os.getenv("SCAN_MIN_CALL_DELAY_SECONDS", "1.0"))
