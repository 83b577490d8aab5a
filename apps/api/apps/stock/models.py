"""
Inventory ledger models: lots, kardex and the documents that post to it.

- StockLot: one receiving batch of one product; the only place balances live
- StockMovement: append-only kardex, one row per quantity change
- Receipt / Issue / Adjustment / Transfer documents with their lines
- DocumentCounter: per-series counter row used for sequential numbering
"""
from django.conf import settings
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .exceptions import BusinessRuleError


class LotStateChoices(models.TextChoices):
    AVAILABLE = 'available', _('Available')
    DEPLETED = 'depleted', _('Depleted')


class MovementTypeChoices(models.TextChoices):
    """
    Kardex movement types.

    Positive deltas: receipt, transfer_in, void_issue (and upward adjustments)
    Negative deltas: issue, transfer_out, void_receipt (and downward adjustments)
    """
    RECEIPT = 'receipt', _('Receipt')
    ISSUE = 'issue', _('Issue')
    ADJUSTMENT = 'adjustment', _('Adjustment')
    TRANSFER_OUT = 'transfer_out', _('Transfer Out')
    TRANSFER_IN = 'transfer_in', _('Transfer In')
    VOID_RECEIPT = 'void_receipt', _('Void Receipt')
    VOID_ISSUE = 'void_issue', _('Void Issue')


class DocumentTypeChoices(models.TextChoices):
    RECEIPT = 'receipt', _('Receipt')
    ISSUE = 'issue', _('Issue')
    ADJUSTMENT = 'adjustment', _('Adjustment')
    TRANSFER = 'transfer', _('Transfer')


class DocumentStatusChoices(models.TextChoices):
    POSTED = 'posted', _('Posted')
    VOIDED = 'voided', _('Voided')


class IssueKindChoices(models.TextChoices):
    SALE = 'sale', _('Sale')
    CONSIGNMENT = 'consignment', _('Consignment')
    BAG_TRANSFER = 'bag_transfer', _('Bag Transfer')
    DONATION = 'donation', _('Donation')
    SAMPLE = 'sample', _('Sample')


# Issue kinds that end up on an invoice
BILLABLE_ISSUE_KINDS = (IssueKindChoices.SALE, IssueKindChoices.CONSIGNMENT)


class AdjustmentReasonChoices(models.TextChoices):
    PHYSICAL_COUNT = 'physical_count', _('Physical Count')
    DAMAGE = 'damage', _('Damage')
    EXPIRY = 'expiry', _('Expiry')
    LOSS = 'loss', _('Loss')
    CORRECTION = 'correction', _('Correction')
    OTHER = 'other', _('Other')


class DocumentSeriesChoices(models.TextChoices):
    RECEIPT = 'receipt', _('Receipts')
    ISSUE = 'issue', _('Issues')
    TRANSFER = 'transfer', _('Transfers')
    ADJUSTMENT = 'adjustment', _('Adjustments')


SERIES_PREFIXES = {
    DocumentSeriesChoices.RECEIPT: 'ENT',
    DocumentSeriesChoices.ISSUE: 'SAL',
    DocumentSeriesChoices.TRANSFER: 'TRF',
    DocumentSeriesChoices.ADJUSTMENT: 'AJU',
}


class StockLot(models.Model):
    """
    A distinct receiving batch of one product.

    Business Rules:
    - current_quantity >= 0
    - state = depleted <=> current_quantity = 0
    - current_quantity = sum of kardex deltas for the lot
    - lots are never deleted
    """
    product = models.ForeignKey(
        'products.Product',
        on_delete=models.PROTECT,
        related_name='lots',
        verbose_name=_('Product')
    )
    supplier = models.ForeignKey(
        'partners.Supplier',
        on_delete=models.PROTECT,
        related_name='lots',
        verbose_name=_('Supplier')
    )
    batch_code = models.CharField(_('Batch Code'), max_length=100, null=True, blank=True)
    expiration_date = models.DateField(_('Expiration Date'), null=True, blank=True)

    initial_quantity = models.IntegerField(_('Initial Quantity'))
    current_quantity = models.IntegerField(_('Current Quantity'))
    state = models.CharField(
        _('State'),
        max_length=20,
        choices=LotStateChoices.choices,
        default=LotStateChoices.AVAILABLE
    )

    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        db_table = 'stock_lots'
        ordering = ['product', 'expiration_date', 'created_at']
        verbose_name = _('Stock Lot')
        verbose_name_plural = _('Stock Lots')
        constraints = [
            models.CheckConstraint(
                condition=models.Q(current_quantity__gte=0),
                name='stock_lot_quantity_non_negative'
            ),
            models.CheckConstraint(
                condition=models.Q(initial_quantity__gt=0),
                name='stock_lot_initial_positive'
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(state=LotStateChoices.DEPLETED, current_quantity=0)
                    | models.Q(state=LotStateChoices.AVAILABLE, current_quantity__gt=0)
                ),
                name='stock_lot_state_matches_quantity'
            ),
        ]
        indexes = [
            models.Index(fields=['product', 'state'], name='idx_lot_product_state'),
            models.Index(fields=['expiration_date'], name='idx_lot_expiration'),
            models.Index(fields=['batch_code'], name='idx_lot_batch'),
        ]

    def __str__(self):
        batch_str = self.batch_code or 'NO-BATCH'
        expiry_str = f" (exp: {self.expiration_date})" if self.expiration_date else ""
        return f"{self.product_id} - {batch_str}{expiry_str}: {self.current_quantity}"

    @staticmethod
    def state_for(quantity):
        """State a lot must be in when holding ``quantity`` units."""
        return LotStateChoices.AVAILABLE if quantity > 0 else LotStateChoices.DEPLETED

    @property
    def is_expired(self):
        if not self.expiration_date:
            return False
        return self.expiration_date < timezone.localdate()

    @property
    def days_until_expiry(self):
        if not self.expiration_date:
            return None
        return (self.expiration_date - timezone.localdate()).days


class StockMovementQuerySet(models.QuerySet):
    """Kardex queryset: rows can be appended and read, never rewritten."""

    def update(self, **kwargs):
        raise BusinessRuleError('Kardex entries are append-only and cannot be updated.')

    def delete(self):
        raise BusinessRuleError('Kardex entries are append-only and cannot be deleted.')


class StockMovement(models.Model):
    """
    Kardex entry - one signed quantity change on one lot.

    Business Rules:
    - quantity_delta != 0
    - balance_after = balance_before + quantity_delta
    - rows are inserted once and never modified or deleted
    """
    product = models.ForeignKey(
        'products.Product',
        on_delete=models.PROTECT,
        related_name='movements',
        verbose_name=_('Product')
    )
    lot = models.ForeignKey(
        StockLot,
        on_delete=models.PROTECT,
        related_name='movements',
        verbose_name=_('Lot')
    )

    movement_type = models.CharField(
        _('Movement Type'),
        max_length=20,
        choices=MovementTypeChoices.choices
    )

    # Originating document
    document_type = models.CharField(
        _('Document Type'),
        max_length=20,
        choices=DocumentTypeChoices.choices
    )
    document_id = models.PositiveBigIntegerField(_('Document ID'))
    document_number = models.CharField(_('Document Number'), max_length=30)

    quantity_delta = models.IntegerField(_('Quantity Delta'), help_text=_('Positive for IN, negative for OUT'))
    balance_before = models.IntegerField(_('Balance Before'))
    balance_after = models.IntegerField(_('Balance After'))
    unit_cost = models.DecimalField(_('Unit Cost'), max_digits=12, decimal_places=2, null=True, blank=True)

    reason = models.CharField(_('Reason'), max_length=30, blank=True)
    notes = models.TextField(_('Notes'), blank=True)

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='stock_movements',
        verbose_name=_('Actor')
    )
    created_at = models.DateTimeField(_('Timestamp'), default=timezone.now)

    objects = StockMovementQuerySet.as_manager()

    class Meta:
        db_table = 'stock_movements'
        ordering = ['-created_at', '-id']
        verbose_name = _('Stock Movement')
        verbose_name_plural = _('Stock Movements')
        constraints = [
            models.CheckConstraint(
                condition=~models.Q(quantity_delta=0),
                name='stock_movement_delta_non_zero'
            ),
            models.CheckConstraint(
                condition=models.Q(
                    balance_after=models.F('balance_before') + models.F('quantity_delta')
                ),
                name='stock_movement_balance_consistent'
            ),
            models.CheckConstraint(
                condition=models.Q(balance_before__gte=0, balance_after__gte=0),
                name='stock_movement_balances_non_negative'
            ),
        ]
        indexes = [
            models.Index(fields=['product', '-created_at'], name='idx_movement_product'),
            models.Index(fields=['lot', '-created_at'], name='idx_movement_lot'),
            models.Index(fields=['movement_type', '-created_at'], name='idx_movement_type'),
            models.Index(fields=['document_type', 'document_id'], name='idx_movement_document'),
            models.Index(fields=['document_number'], name='idx_movement_doc_number'),
        ]

    def __str__(self):
        return f"{self.get_movement_type_display()} {self.document_number} lot={self.lot_id} ({self.quantity_delta:+d})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise BusinessRuleError('Kardex entries are append-only and cannot be updated.')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise BusinessRuleError('Kardex entries are append-only and cannot be deleted.')


class DocumentCounter(models.Model):
    """
    Last number handed out per series.

    Locked with SELECT ... FOR UPDATE by the numberer so concurrent postings
    in the same series serialize on this row.
    """
    series = models.CharField(
        _('Series'),
        max_length=20,
        choices=DocumentSeriesChoices.choices,
        unique=True
    )
    last_value = models.PositiveIntegerField(_('Last Value'), default=0)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        db_table = 'stock_document_counters'
        verbose_name = _('Document Counter')
        verbose_name_plural = _('Document Counters')

    def __str__(self):
        return f"{self.series}: {self.last_value}"


class NumberedDocument(models.Model):
    """Fields shared by every document that posts to the kardex."""
    number = models.CharField(_('Number'), max_length=30, unique=True)
    notes = models.TextField(_('Notes'), blank=True)
    idempotency_key = models.CharField(
        _('Idempotency Key'),
        max_length=100,
        null=True,
        blank=True,
        unique=True,
        help_text=_('Client-supplied key; a repeated key returns the original document')
    )
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='+',
        verbose_name=_('Actor')
    )
    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)

    class Meta:
        abstract = True
        ordering = ['-created_at', '-id']

    def __str__(self):
        return self.number


class VoidableDocument(NumberedDocument):
    """Receipts and issues can be voided once, subject to preconditions."""
    status = models.CharField(
        _('Status'),
        max_length=20,
        choices=DocumentStatusChoices.choices,
        default=DocumentStatusChoices.POSTED
    )
    voided_at = models.DateTimeField(_('Voided At'), null=True, blank=True)
    voided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        verbose_name=_('Voided By')
    )

    class Meta(NumberedDocument.Meta):
        abstract = True


class ReceiptDocument(VoidableDocument):
    """Goods received from a supplier; each line opens one lot."""
    supplier = models.ForeignKey(
        'partners.Supplier',
        on_delete=models.PROTECT,
        related_name='receipts',
        verbose_name=_('Supplier')
    )
    document_date = models.DateField(_('Document Date'), default=timezone.localdate)
    supplier_document_type = models.CharField(_('Supplier Document Type'), max_length=30, default='invoice')
    supplier_document_number = models.CharField(_('Supplier Document Number'), max_length=50, blank=True)
    total = models.DecimalField(_('Total'), max_digits=14, decimal_places=2, default=0)

    class Meta(VoidableDocument.Meta):
        db_table = 'stock_receipts'
        verbose_name = _('Receipt')
        verbose_name_plural = _('Receipts')
        indexes = [
            models.Index(fields=['supplier', '-document_date'], name='idx_receipt_supplier'),
            models.Index(fields=['status'], name='idx_receipt_status'),
        ]


class ReceiptLine(models.Model):
    receipt = models.ForeignKey(
        ReceiptDocument,
        on_delete=models.CASCADE,
        related_name='lines',
        verbose_name=_('Receipt')
    )
    line_number = models.PositiveSmallIntegerField(_('Line Number'))
    product = models.ForeignKey(
        'products.Product',
        on_delete=models.PROTECT,
        related_name='receipt_lines',
        verbose_name=_('Product')
    )
    lot = models.OneToOneField(
        StockLot,
        on_delete=models.PROTECT,
        related_name='receipt_line',
        verbose_name=_('Lot')
    )
    quantity = models.IntegerField(_('Quantity'))
    unit_price = models.DecimalField(_('Unit Price'), max_digits=12, decimal_places=2)
    batch_code = models.CharField(_('Batch Code'), max_length=100, null=True, blank=True)
    expiration_date = models.DateField(_('Expiration Date'), null=True, blank=True)

    class Meta:
        db_table = 'stock_receipt_lines'
        ordering = ['receipt', 'line_number']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name='receipt_line_quantity_positive'
            ),
            models.CheckConstraint(
                condition=models.Q(unit_price__gte=0),
                name='receipt_line_price_non_negative'
            ),
            models.UniqueConstraint(
                fields=['receipt', 'line_number'],
                name='unique_receipt_line_number'
            ),
        ]

    def __str__(self):
        return f"{self.receipt_id}#{self.line_number} {self.product_id} x{self.quantity}"


class IssueDocument(VoidableDocument):
    """Goods leaving inventory; each line depletes exactly one lot."""
    kind = models.CharField(_('Kind'), max_length=20, choices=IssueKindChoices.choices)
    client = models.ForeignKey(
        'partners.Client',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='issues',
        verbose_name=_('Client')
    )
    bag = models.ForeignKey(
        'partners.Bag',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='issues',
        verbose_name=_('Bag')
    )
    document_date = models.DateField(_('Document Date'), default=timezone.localdate)

    # Billing
    billed = models.BooleanField(_('Billed'), default=False)
    invoice_number = models.CharField(_('Invoice Number'), max_length=50, blank=True)
    billed_at = models.DateTimeField(_('Billed At'), null=True, blank=True)

    class Meta(VoidableDocument.Meta):
        db_table = 'stock_issues'
        verbose_name = _('Issue')
        verbose_name_plural = _('Issues')
        constraints = [
            models.CheckConstraint(
                condition=~models.Q(kind=IssueKindChoices.CONSIGNMENT) | models.Q(client__isnull=False),
                name='issue_consignment_requires_client'
            ),
            models.CheckConstraint(
                condition=~models.Q(kind=IssueKindChoices.BAG_TRANSFER) | models.Q(bag__isnull=False),
                name='issue_bag_transfer_requires_bag'
            ),
        ]
        indexes = [
            models.Index(fields=['kind', 'status'], name='idx_issue_kind_status'),
            models.Index(fields=['client', 'billed'], name='idx_issue_client_billed'),
        ]


class IssueLine(models.Model):
    issue = models.ForeignKey(
        IssueDocument,
        on_delete=models.CASCADE,
        related_name='lines',
        verbose_name=_('Issue')
    )
    line_number = models.PositiveSmallIntegerField(_('Line Number'))
    product = models.ForeignKey(
        'products.Product',
        on_delete=models.PROTECT,
        related_name='issue_lines',
        verbose_name=_('Product')
    )
    lot = models.ForeignKey(
        StockLot,
        on_delete=models.PROTECT,
        related_name='issue_lines',
        verbose_name=_('Lot')
    )
    quantity = models.IntegerField(_('Quantity'))
    unit_price = models.DecimalField(_('Unit Price'), max_digits=12, decimal_places=2, null=True, blank=True)
    requested_batch_code = models.CharField(_('Requested Batch Code'), max_length=100, blank=True)

    class Meta:
        db_table = 'stock_issue_lines'
        ordering = ['issue', 'line_number']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name='issue_line_quantity_positive'
            ),
            models.UniqueConstraint(
                fields=['issue', 'line_number'],
                name='unique_issue_line_number'
            ),
        ]

    def __str__(self):
        return f"{self.issue_id}#{self.line_number} lot={self.lot_id} x{self.quantity}"


class AdjustmentDocument(NumberedDocument):
    """Absolute correction of one lot's on-hand quantity."""
    lot = models.ForeignKey(
        StockLot,
        on_delete=models.PROTECT,
        related_name='adjustments',
        verbose_name=_('Lot')
    )
    previous_quantity = models.IntegerField(_('Previous Quantity'))
    new_quantity = models.IntegerField(_('New Quantity'))
    quantity_delta = models.IntegerField(_('Quantity Delta'))
    reason = models.CharField(_('Reason'), max_length=30, choices=AdjustmentReasonChoices.choices)

    class Meta(NumberedDocument.Meta):
        db_table = 'stock_adjustments'
        verbose_name = _('Adjustment')
        verbose_name_plural = _('Adjustments')
        constraints = [
            models.CheckConstraint(
                condition=models.Q(new_quantity__gte=0),
                name='adjustment_new_quantity_non_negative'
            ),
            models.CheckConstraint(
                condition=models.Q(
                    quantity_delta=models.F('new_quantity') - models.F('previous_quantity')
                ),
                name='adjustment_delta_consistent'
            ),
        ]


class TransferDocument(NumberedDocument):
    """Quantity moved from one lot to another lot of the same product."""
    source_lot = models.ForeignKey(
        StockLot,
        on_delete=models.PROTECT,
        related_name='transfers_out',
        verbose_name=_('Source Lot')
    )
    destination_lot = models.ForeignKey(
        StockLot,
        on_delete=models.PROTECT,
        related_name='transfers_in',
        verbose_name=_('Destination Lot')
    )
    quantity = models.IntegerField(_('Quantity'))

    class Meta(NumberedDocument.Meta):
        db_table = 'stock_transfers'
        verbose_name = _('Transfer')
        verbose_name_plural = _('Transfers')
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name='transfer_quantity_positive'
            ),
            models.CheckConstraint(
                condition=~models.Q(source_lot=models.F('destination_lot')),
                name='transfer_distinct_lots'
            ),
        ]
