"""
Collector application configuration.
"""

from django.apps import AppConfig


class CollectorConfig(AppConfig):
    """Configuration for the collector Django application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "collector"
    verbose_name = "VOD Collector"
