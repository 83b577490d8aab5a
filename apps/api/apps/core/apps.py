"""Core app configuration."""
from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Shared infrastructure: observability (logging, metrics, tracing)."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'
