"""
Partner models: suppliers that deliver lots, clients that receive
consignments and sales, and bags (field sales kits) fed by internal transfers.

The ledger references these by id only.
"""
from django.db import models
from django.utils.translation import gettext_lazy as _


class PartnerBase(models.Model):
    """Shared identity fields for partners."""
    code = models.CharField(_('Code'), max_length=50, unique=True)
    name = models.CharField(_('Name'), max_length=255)
    is_active = models.BooleanField(_('Active'), default=True)

    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        abstract = True
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.code})"


class Supplier(PartnerBase):
    tax_id = models.CharField(_('Tax ID'), max_length=30, blank=True)

    class Meta(PartnerBase.Meta):
        db_table = 'suppliers'
        verbose_name = _('Supplier')
        verbose_name_plural = _('Suppliers')


class Client(PartnerBase):
    tax_id = models.CharField(_('Tax ID'), max_length=30, blank=True)

    class Meta(PartnerBase.Meta):
        db_table = 'clients'
        verbose_name = _('Client')
        verbose_name_plural = _('Clients')


class Bag(PartnerBase):
    """Field sales kit (maleta) carried by a sales representative."""
    responsible = models.CharField(_('Responsible'), max_length=255, blank=True)

    class Meta(PartnerBase.Meta):
        db_table = 'bags'
        verbose_name = _('Bag')
        verbose_name_plural = _('Bags')
