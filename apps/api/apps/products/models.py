"""
Product models - medical-supply catalog.

The ledger only reads products: tracking flags decide what a receipt line
must carry, thresholds feed the low-stock report.
"""
from django.db import models
from django.utils.translation import gettext_lazy as _


class Product(models.Model):
    """
    Catalog product.

    Business Rules:
    - code is unique
    - requires_lot: every received lot must carry a batch code
    - requires_expiration: every received lot must carry an expiration date
    """
    # Basic info
    code = models.CharField(_('Code'), max_length=50, unique=True)
    reference = models.CharField(_('Reference'), max_length=100, blank=True)
    name = models.CharField(_('Name'), max_length=255)
    unit_of_measure = models.CharField(_('Unit of Measure'), max_length=20, default='UNIT')

    # Tracking
    requires_lot = models.BooleanField(_('Requires Lot'), default=True)
    requires_expiration = models.BooleanField(_('Requires Expiration'), default=True)

    # Pricing
    purchase_price = models.DecimalField(_('Purchase Price'), max_digits=12, decimal_places=2, default=0)
    sale_price = models.DecimalField(_('Sale Price'), max_digits=12, decimal_places=2, default=0)

    # Reorder thresholds
    min_stock = models.PositiveIntegerField(_('Minimum Stock'), default=0)
    max_stock = models.PositiveIntegerField(_('Maximum Stock'), default=0)

    # Status
    is_active = models.BooleanField(_('Active'), default=True)

    # Metadata
    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        db_table = 'products'
        ordering = ['code']
        indexes = [
            models.Index(fields=['name'], name='idx_product_name'),
            models.Index(fields=['is_active'], name='idx_product_active'),
        ]
        verbose_name = _('Product')
        verbose_name_plural = _('Products')

    def __str__(self):
        return f"{self.code} - {self.name}"
