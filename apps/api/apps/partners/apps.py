"""Partners app configuration."""
from django.apps import AppConfig


class PartnersConfig(AppConfig):
    """Suppliers, clients and bags referenced by the ledger."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.partners'
    verbose_name = 'Partners'
