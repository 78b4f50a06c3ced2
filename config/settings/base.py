"""
Django base settings for the Fuel Price Crawler.

This module contains settings common to all environments.
For more information on this file, see
https://docs.djangoproject.com/en/4.2/topics/settings/
"""

import os
from pathlib import Path
from celery.schedules import crontab
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
    "django-insecure-pricecrawler-dev-key-change-in-production"
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
    "pricecrawler",
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


# Celery Configuration
# https://docs.celeryproject.org/en/stable/django/first-steps-with-django.html

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 3 * 60 * 60  # a full crawl can take a couple of hours

# Task routing - crawl queue
CELERY_TASK_ROUTES = {
    "pricecrawler.tasks.run_price_crawl": {"queue": "crawl"},
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
}


# DRF Spectacular (OpenAPI/Swagger) Configuration
# https://drf-spectacular.readthedocs.io/

SPECTACULAR_SETTINGS = {
    "TITLE": "Fuel Price Crawler API",
    "DESCRIPTION": "Crawl runs and on-demand triggers for the fuel price crawler",
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
        "pricecrawler": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
    },
}


# Sentry Configuration
# https://docs.sentry.io/platforms/python/guides/django/

SENTRY_DSN = os.getenv("SENTRY_DSN", "")
SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

# Initialize Sentry only when a DSN is configured
if SENTRY_DSN:
    import sentry_sdk

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        environment=SENTRY_ENVIRONMENT,
    )


# Fuel Price Crawler Configuration

# Upstream price-reporting authority
FUEL_CRAWLER_CATALOG_BASE_URL = os.getenv(
    "FUEL_CRAWLER_CATALOG_BASE_URL",
    "https://api-catalogo.cne.gob.mx/api/utiles"
)
FUEL_CRAWLER_PRICING_BASE_URL = os.getenv(
    "FUEL_CRAWLER_PRICING_BASE_URL",
    "https://api-catalogo.cne.gob.mx/api/utiles"
)
FUEL_CRAWLER_USER_AGENT = os.getenv("FUEL_CRAWLER_USER_AGENT", "fuel-price-crawler/1.0")

# Per-call time bound (seconds)
FUEL_CRAWLER_REQUEST_TIMEOUT = float(os.getenv("FUEL_CRAWLER_REQUEST_TIMEOUT", "30"))

# Retry policy: exponential backoff with jitter
FUEL_CRAWLER_MAX_RETRIES = int(os.getenv("FUEL_CRAWLER_MAX_RETRIES", "3"))
FUEL_CRAWLER_RETRY_BASE_DELAY = float(os.getenv("FUEL_CRAWLER_RETRY_BASE_DELAY", "1.0"))
FUEL_CRAWLER_RETRY_MAX_DELAY = float(os.getenv("FUEL_CRAWLER_RETRY_MAX_DELAY", "30"))
FUEL_CRAWLER_RETRY_MULTIPLIER = float(os.getenv("FUEL_CRAWLER_RETRY_MULTIPLIER", "2.0"))
FUEL_CRAWLER_RETRY_JITTER = float(os.getenv("FUEL_CRAWLER_RETRY_JITTER", "0.25"))

# Cap on Retry-After hints from 429 responses (seconds)
FUEL_CRAWLER_MAX_RETRY_AFTER = float(os.getenv("FUEL_CRAWLER_MAX_RETRY_AFTER", "60"))

# Bounded sub-region worker pool
FUEL_CRAWLER_WORKER_CONCURRENCY = int(os.getenv("FUEL_CRAWLER_WORKER_CONCURRENCY", "4"))

# Consecutive sub-region failures that short-circuit a region
FUEL_CRAWLER_REGION_FAILURE_THRESHOLD = int(
    os.getenv("FUEL_CRAWLER_REGION_FAILURE_THRESHOLD", "3")
)

# Plausibility bounds for one price entry
FUEL_CRAWLER_MIN_PRICE = os.getenv("FUEL_CRAWLER_MIN_PRICE", "0")
FUEL_CRAWLER_MAX_PRICE = os.getenv("FUEL_CRAWLER_MAX_PRICE", "100")

# Completion webhook
FUEL_CRAWLER_WEBHOOK_URL = os.getenv("FUEL_CRAWLER_WEBHOOK_URL", "")
FUEL_CRAWLER_WEBHOOK_SECRET = os.getenv("FUEL_CRAWLER_WEBHOOK_SECRET", "")
FUEL_CRAWLER_WEBHOOK_MAX_ERRORS = int(os.getenv("FUEL_CRAWLER_WEBHOOK_MAX_ERRORS", "50"))

# Daily trigger (UTC) for Celery Beat
FUEL_CRAWLER_RUN_HOUR = int(os.getenv("FUEL_CRAWLER_RUN_HOUR", "5"))
FUEL_CRAWLER_RUN_MINUTE = int(os.getenv("FUEL_CRAWLER_RUN_MINUTE", "0"))

CELERY_BEAT_SCHEDULE = {
    "run-price-crawl-daily": {
        "task": "pricecrawler.tasks.run_price_crawl",
        "schedule": crontab(hour=FUEL_CRAWLER_RUN_HOUR, minute=FUEL_CRAWLER_RUN_MINUTE),
    },
}

# A lease older than this is considered abandoned
FUEL_CRAWLER_LEASE_TTL_MINUTES = int(os.getenv("FUEL_CRAWLER_LEASE_TTL_MINUTES", "180"))

# Health check reports "stale" when the last completed run is older than this
FUEL_CRAWLER_DATA_STALE_HOURS = int(os.getenv("FUEL_CRAWLER_DATA_STALE_HOURS", "25"))
