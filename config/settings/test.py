"""
Test settings for the Fuel Price Crawler.

Uses in-memory SQLite and eager Celery for fast test execution.
"""

from .base import *

# Test mode
DEBUG = False

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

# Test database - in-memory SQLite for speed (shared cache so that
# sync_to_async worker threads see the same database as the test thread)
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": "file:memorydb_default?mode=memory&cache=shared",
    }
}

# Test Celery - run tasks synchronously
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

# Test logging - minimal output
LOGGING["loggers"]["django"]["level"] = "WARNING"
LOGGING["loggers"]["pricecrawler"]["level"] = "WARNING"

# Password validators disabled for faster tests
AUTH_PASSWORD_VALIDATORS = []

# Use faster password hasher for tests
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

# Disable Sentry in tests
SENTRY_DSN = ""

# Test crawler settings - fail fast, never touch the network
FUEL_CRAWLER_CATALOG_BASE_URL = "https://catalog.test/api"
FUEL_CRAWLER_PRICING_BASE_URL = "https://pricing.test/api"
FUEL_CRAWLER_REQUEST_TIMEOUT = 5
FUEL_CRAWLER_MAX_RETRIES = 0
FUEL_CRAWLER_RETRY_BASE_DELAY = 0
FUEL_CRAWLER_RETRY_MAX_DELAY = 0
FUEL_CRAWLER_RETRY_JITTER = 0
FUEL_CRAWLER_WEBHOOK_URL = ""
FUEL_CRAWLER_WEBHOOK_SECRET = ""
