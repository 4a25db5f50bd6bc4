"""
Django base settings for the VOD Aggregator service.

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


# Quick-start development settings - unsuitable for production
# See https://docs.djangoproject.com/en/4.2/howto/deployment/checklist/

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv(
    "SECRET_KEY",
    "django-insecure-vod-aggregator-dev-key-change-in-production"
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
    "collector",
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

WSGI_APPLICATION = "config.wsgi.application"


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

LANGUAGE_CODE = "zh-hans"

TIME_ZONE = "Asia/Shanghai"

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
# Long full collections re-dispatch themselves from the checkpoint
CELERY_TASK_TIME_LIMIT = 6 * 60 * 60

# Task routing - collection and probe queues
CELERY_TASK_ROUTES = {
    "collector.tasks.run_collection_task": {"queue": "collect"},
    "collector.tasks.sync_source_categories": {"queue": "collect"},
    "collector.tasks.probe_sources": {"queue": "probe"},
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
    "PAGE_SIZE": 20,
}


# DRF Spectacular (OpenAPI/Swagger) Configuration
# https://drf-spectacular.readthedocs.io/

SPECTACULAR_SETTINGS = {
    "TITLE": "VOD Aggregator API",
    "DESCRIPTION": "Federated catalog queries and collection task control",
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
        "collector": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
    },
}


# Sentry Configuration
# https://docs.sentry.io/platforms/python/guides/django/

SENTRY_DSN = os.getenv("SENTRY_DSN", "")
SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.2"))
SENTRY_PROFILE_SAMPLE_RATE = float(os.getenv("SENTRY_PROFILE_SAMPLE_RATE", "0.0"))

# Initialize Sentry
import sentry_sdk

sentry_sdk.init(
    dsn=SENTRY_DSN,
    send_default_pii=False,
    traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
    # Profile sample rate (requires sentry-sdk[profiling])
    profiles_sample_rate=SENTRY_PROFILE_SAMPLE_RATE,
    environment=SENTRY_ENVIRONMENT,
)


# Collector Configuration

# Timeout for collection page requests (seconds)
COLLECTOR_REQUEST_TIMEOUT = int(os.getenv("COLLECTOR_REQUEST_TIMEOUT", "30"))

# Maximum retries for a failed page request
COLLECTOR_MAX_RETRIES = int(os.getenv("COLLECTOR_MAX_RETRIES", "2"))

# Base delay between retries (seconds), doubled on every attempt
COLLECTOR_RETRY_BACKOFF = float(os.getenv("COLLECTOR_RETRY_BACKOFF", "1.0"))

# Delay between two page requests against the same source (seconds)
COLLECTOR_PAGE_DELAY = float(os.getenv("COLLECTOR_PAGE_DELAY", "0.5"))

COLLECTOR_USER_AGENT = os.getenv(
    "COLLECTOR_USER_AGENT",
    "Mozilla/5.0 (compatible; VodAggregator/1.0)"
)

# Parallel sources inside one collection task (1 = sequential)
COLLECTOR_SOURCE_WORKERS = int(os.getenv("COLLECTOR_SOURCE_WORKERS", "1"))

# Number of checkpointed pages after which a running task yields its worker
COLLECTOR_PAGES_PER_RUN = int(os.getenv("COLLECTOR_PAGES_PER_RUN", "0"))


# Aggregator Configuration

COLLECTOR_AGGREGATE_TIMEOUT_MS = int(os.getenv("COLLECTOR_AGGREGATE_TIMEOUT_MS", "3000"))
COLLECTOR_SEARCH_TIMEOUT_MS = int(os.getenv("COLLECTOR_SEARCH_TIMEOUT_MS", "5000"))
COLLECTOR_AGGREGATE_MAX_WORKERS = int(os.getenv("COLLECTOR_AGGREGATE_MAX_WORKERS", "8"))
COLLECTOR_QUERY_CACHE_TTL = int(os.getenv("COLLECTOR_QUERY_CACHE_TTL", "60"))
COLLECTOR_CATALOG_PAGE_SIZE = int(os.getenv("COLLECTOR_CATALOG_PAGE_SIZE", "20"))


# Classifier Configuration

# Learned category mappings and source formats are cached for this long (seconds)
COLLECTOR_MAPPING_CACHE_TTL = int(os.getenv("COLLECTOR_MAPPING_CACHE_TTL", "300"))

# Quality score weighting (completeness points per field, total 100)
COLLECTOR_QUALITY_WEIGHTS = {
    "cover": 20,
    "cast": 15,
    "director": 10,
    "synopsis": 25,
    "episodes": 30,
}


# Source Health Configuration

COLLECTOR_PROBE_TIMEOUT = int(os.getenv("COLLECTOR_PROBE_TIMEOUT", "10"))
COLLECTOR_SLOW_THRESHOLD_MS = int(os.getenv("COLLECTOR_SLOW_THRESHOLD_MS", "3000"))
COLLECTOR_MAX_CONSECUTIVE_FAILURES = int(
    os.getenv("COLLECTOR_MAX_CONSECUTIVE_FAILURES", "3")
)
COLLECTOR_PROBE_WORKERS = int(os.getenv("COLLECTOR_PROBE_WORKERS", "5"))


# Retention Configuration

COLLECTOR_TASK_RETENTION_DAYS = int(os.getenv("COLLECTOR_TASK_RETENTION_DAYS", "30"))
COLLECTOR_LOG_RETENTION_DAYS = int(os.getenv("COLLECTOR_LOG_RETENTION_DAYS", "7"))


# Monitoring Configuration
# https://docs.sentry.io/platforms/python/guides/django/

# Consecutive failure threshold - alert after N consecutive failures per source
COLLECTOR_FAILURE_THRESHOLD = int(os.getenv("COLLECTOR_FAILURE_THRESHOLD", "5"))

# Redis used for consecutive failure counters (empty disables tracking)
COLLECTOR_FAILURE_REDIS_URL = os.getenv("COLLECTOR_FAILURE_REDIS_URL", CELERY_BROKER_URL)
