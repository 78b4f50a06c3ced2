"""
Price crawler application configuration.
"""

from django.apps import AppConfig


class PriceCrawlerConfig(AppConfig):
    """Configuration for the price crawler Django application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "pricecrawler"
    verbose_name = "Fuel Price Crawler"
