"""
Django base settings for the Piracy Scan Engine service.

This module contains settings common to all environments.
For more information on this file, see
https://docs.djangoproject.com/en/4.2/topics/settings/
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv(
    "SECRET_KEY",
    "django-insecure-scan-engine-dev-key-change-in-production"
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv("DEBUG", "True") == "True"

ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")


# Application definition

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Third-party apps
    "rest_framework",
    "drf_spectacular",
    # Local apps
    "scan_engine",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]


# Database
# https://docs.djangoproject.com/en/4.2/ref/settings/#databases
# Configured in environment-specific settings (development.py, production.py, test.py)

DATABASES = {
    # Override in environment-specific settings
}


# Password validation
# https://docs.djangoproject.com/en/4.2/ref/settings/#auth-password-validators

AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.CommonPasswordValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.NumericPasswordValidator",
    },
]


# Internationalization
# https://docs.djangoproject.com/en/4.2/topics/i18n/

LANGUAGE_CODE = "en-us"

TIME_ZONE = "UTC"

USE_I18N = True

USE_TZ = True


# Static files (CSS, JavaScript, Images)
# https://docs.djangoproject.com/en/4.2/howto/static-files/

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# Default primary key field type
# https://docs.djangoproject.com/en/4.2/ref/settings/#default-auto-field

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Cache Configuration
# https://docs.djangoproject.com/en/4.2/topics/cache/
# Configured in environment-specific settings

CACHES = {
    # Override in environment-specific settings
}


# Celery Configuration
# https://docs.celeryproject.org/en/stable/django/first-steps-with-django.html

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 10 * 60  # hard ceiling above the scan deadline

CELERY_TASK_ROUTES = {
    "scan_engine.tasks.run_product_scan": {"queue": "scan"},
}


# Django REST Framework Configuration
# https://www.django-rest-framework.org/

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 100,
}


# DRF Spectacular (OpenAPI/Swagger) Configuration
# https://drf-spectacular.readthedocs.io/

SPECTACULAR_SETTINGS = {
    "TITLE": "Piracy Scan Engine API",
    "DESCRIPTION": "Budgeted piracy detection scans for digital products",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
}


# Logging Configuration
# https://docs.djangoproject.com/en/4.2/topics/logging/

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
        "scan_engine": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
    },
}


# External API Configuration

# AI completion service (optional enrichment/filtering)
AI_COMPLETION_SERVICE_URL = os.getenv("AI_COMPLETION_SERVICE_URL", "")
AI_COMPLETION_SERVICE_TOKEN = os.getenv("AI_COMPLETION_SERVICE_TOKEN", "")

# SerpAPI search provider
SERPAPI_API_KEY = os.getenv("SERPAPI_API_KEY", "")

# Notification/CRM webhook (fire-and-forget)
SCAN_NOTIFICATION_WEBHOOK_URL = os.getenv("SCAN_NOTIFICATION_WEBHOOK_URL", "")
SCAN_NOTIFICATION_TIMEOUT_SECONDS = float(
    os.getenv("SCAN_NOTIFICATION_TIMEOUT_SECONDS", "5")
)


# Sentry Configuration
# https://docs.sentry.io/platforms/python/guides/django/

SENTRY_DSN = os.getenv("SENTRY_DSN", "")
SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.2"))

if SENTRY_DSN:
    import sentry_sdk

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        send_default_pii=False,
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        environment=SENTRY_ENVIRONMENT,
    )


# Scan Engine Configuration

# Hard cap on search provider calls per scan run
SCAN_SEARCH_BUDGET = int(os.getenv("SCAN_SEARCH_BUDGET", "75"))

# Budget held back from tiers 1 and 2 for the signal-based deep dive
SCAN_TIER3_RESERVE = int(os.getenv("SCAN_TIER3_RESERVE", "10"))

# Secondary budget cap for platform scanners
SCAN_PLATFORM_BUDGET_CAP = int(os.getenv("SCAN_PLATFORM_BUDGET_CAP", "12"))

# Minimum platform weight for a platform scanner to be selected
SCAN_PLATFORM_WEIGHT_THRESHOLD = float(
    os.getenv("SCAN_PLATFORM_WEIGHT_THRESHOLD", "0.6")
)

# Wall-clock deadline for one scan run (seconds)
SCAN_MAX_DURATION_SECONDS = float(os.getenv("SCAN_MAX_DURATION_SECONDS", "240"))

# Optional AI filtering of scored hits
SCAN_AI_FILTER_ENABLED = os.getenv("SCAN_AI_FILTER_ENABLED", "True") == "True"
SCAN_AI_CONFIDENCE_THRESHOLD = float(os.getenv("SCAN_AI_CONFIDENCE_THRESHOLD", "0.60"))
SCAN_AI_MAX_CONCURRENCY = int(os.getenv("SCAN_AI_MAX_CONCURRENCY", "5"))

# Search provider pacing
SCAN_MIN_CALL_DELAY_SECONDS = float(os.getenv("SCAN_MIN_CALL_DELAY_SECONDS", "0.15"))
SCAN_BATCH_CONCURRENCY = int(os.getenv("SCAN_BATCH_CONCURRENCY", "3"))
SCAN_CALL_TIMEOUT_SECONDS = float(os.getenv("SCAN_CALL_TIMEOUT_SECONDS", "15"))

# Confidence at or above which a new hit triggers a high-severity notification
SCAN_HIGH_SEVERITY_THRESHOLD = int(os.getenv("SCAN_HIGH_SEVERITY_THRESHOLD", "80"))
