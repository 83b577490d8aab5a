"""
Inventory ledger: lots, kardex, document counters and posting documents.

Business Rules Enforced:
- StockLot.current_quantity >= 0, initial_quantity > 0
- StockLot.state = depleted <=> current_quantity = 0
- StockMovement.quantity_delta != 0
- StockMovement.balance_after = balance_before + quantity_delta
- Document numbers unique per table; idempotency keys unique per table
- Consignments reference a client, bag transfers reference a bag
- Transfers move a positive quantity between two distinct lots

Generated manually on 2026-10-18
"""
from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


DOCUMENT_STATUS_CHOICES = [('posted', 'Posted'), ('voided', 'Voided')]

DOCUMENT_TYPE_CHOICES = [
    ('receipt', 'Receipt'),
    ('issue', 'Issue'),
    ('adjustment', 'Adjustment'),
    ('transfer', 'Transfer'),
]


def _document_fields():
    """Fields shared by every numbered document."""
    return [
        ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
        ('number', models.CharField(max_length=30, unique=True, verbose_name='Number')),
        ('notes', models.TextField(blank=True, verbose_name='Notes')),
        ('idempotency_key', models.CharField(
            blank=True,
            help_text='Client-supplied key; a repeated key returns the original document',
            max_length=100,
            null=True,
            unique=True,
            verbose_name='Idempotency Key',
        )),
        ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created At')),
        ('actor', models.ForeignKey(
            on_delete=django.db.models.deletion.PROTECT,
            related_name='+',
            to=settings.AUTH_USER_MODEL,
            verbose_name='Actor',
        )),
    ]


def _void_fields():
    return [
        ('status', models.CharField(choices=DOCUMENT_STATUS_CHOICES, default='posted', max_length=20, verbose_name='Status')),
        ('voided_at', models.DateTimeField(blank=True, null=True, verbose_name='Voided At')),
        ('voided_by', models.ForeignKey(
            blank=True,
            null=True,
            on_delete=django.db.models.deletion.SET_NULL,
            related_name='+',
            to=settings.AUTH_USER_MODEL,
            verbose_name='Voided By',
        )),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('products', '0001_initial'),
        ('partners', '0001_initial'),
    ]

    operations = [
        # ====================================================================
        # Lots
        # ====================================================================
        migrations.CreateModel(
            name='StockLot',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('batch_code', models.CharField(blank=True, max_length=100, null=True, verbose_name='Batch Code')),
                ('expiration_date', models.DateField(blank=True, null=True, verbose_name='Expiration Date')),
                ('initial_quantity', models.IntegerField(verbose_name='Initial Quantity')),
                ('current_quantity', models.IntegerField(verbose_name='Current Quantity')),
                ('state', models.CharField(
                    choices=[('available', 'Available'), ('depleted', 'Depleted')],
                    default='available',
                    max_length=20,
                    verbose_name='State',
                )),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Updated At')),
                ('product', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='lots',
                    to='products.product',
                    verbose_name='Product',
                )),
                ('supplier', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='lots',
                    to='partners.supplier',
                    verbose_name='Supplier',
                )),
            ],
            options={
                'verbose_name': 'Stock Lot',
                'verbose_name_plural': 'Stock Lots',
                'db_table': 'stock_lots',
                'ordering': ['product', 'expiration_date', 'created_at'],
                'indexes': [
                    models.Index(fields=['product', 'state'], name='idx_lot_product_state'),
                    models.Index(fields=['expiration_date'], name='idx_lot_expiration'),
                    models.Index(fields=['batch_code'], name='idx_lot_batch'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(current_quantity__gte=0),
                        name='stock_lot_quantity_non_negative',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(initial_quantity__gt=0),
                        name='stock_lot_initial_positive',
                    ),
                    models.CheckConstraint(
                        condition=(
                            models.Q(state='depleted', current_quantity=0)
                            | models.Q(state='available', current_quantity__gt=0)
                        ),
                        name='stock_lot_state_matches_quantity',
                    ),
                ],
            },
        ),

        # ====================================================================
        # Kardex
        # ====================================================================
        migrations.CreateModel(
            name='StockMovement',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('movement_type', models.CharField(
                    choices=[
                        ('receipt', 'Receipt'),
                        ('issue', 'Issue'),
                        ('adjustment', 'Adjustment'),
                        ('transfer_out', 'Transfer Out'),
                        ('transfer_in', 'Transfer In'),
                        ('void_receipt', 'Void Receipt'),
                        ('void_issue', 'Void Issue'),
                    ],
                    max_length=20,
                    verbose_name='Movement Type',
                )),
                ('document_type', models.CharField(choices=DOCUMENT_TYPE_CHOICES, max_length=20, verbose_name='Document Type')),
                ('document_id', models.PositiveBigIntegerField(verbose_name='Document ID')),
                ('document_number', models.CharField(max_length=30, verbose_name='Document Number')),
                ('quantity_delta', models.IntegerField(help_text='Positive for IN, negative for OUT', verbose_name='Quantity Delta')),
                ('balance_before', models.IntegerField(verbose_name='Balance Before')),
                ('balance_after', models.IntegerField(verbose_name='Balance After')),
                ('unit_cost', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True, verbose_name='Unit Cost')),
                ('reason', models.CharField(blank=True, max_length=30, verbose_name='Reason')),
                ('notes', models.TextField(blank=True, verbose_name='Notes')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, verbose_name='Timestamp')),
                ('actor', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='stock_movements',
                    to=settings.AUTH_USER_MODEL,
                    verbose_name='Actor',
                )),
                ('lot', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='movements',
                    to='stock.stocklot',
                    verbose_name='Lot',
                )),
                ('product', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='movements',
                    to='products.product',
                    verbose_name='Product',
                )),
            ],
            options={
                'verbose_name': 'Stock Movement',
                'verbose_name_plural': 'Stock Movements',
                'db_table': 'stock_movements',
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['product', '-created_at'], name='idx_movement_product'),
                    models.Index(fields=['lot', '-created_at'], name='idx_movement_lot'),
                    models.Index(fields=['movement_type', '-created_at'], name='idx_movement_type'),
                    models.Index(fields=['document_type', 'document_id'], name='idx_movement_document'),
                    models.Index(fields=['document_number'], name='idx_movement_doc_number'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=~models.Q(quantity_delta=0),
                        name='stock_movement_delta_non_zero',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            balance_after=models.F('balance_before') + models.F('quantity_delta')
                        ),
                        name='stock_movement_balance_consistent',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(balance_before__gte=0, balance_after__gte=0),
                        name='stock_movement_balances_non_negative',
                    ),
                ],
            },
        ),

        # ====================================================================
        # Numbering
        # ====================================================================
        migrations.CreateModel(
            name='DocumentCounter',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('series', models.CharField(
                    choices=[
                        ('receipt', 'Receipts'),
                        ('issue', 'Issues'),
                        ('transfer', 'Transfers'),
                        ('adjustment', 'Adjustments'),
                    ],
                    max_length=20,
                    unique=True,
                    verbose_name='Series',
                )),
                ('last_value', models.PositiveIntegerField(default=0, verbose_name='Last Value')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Updated At')),
            ],
            options={
                'verbose_name': 'Document Counter',
                'verbose_name_plural': 'Document Counters',
                'db_table': 'stock_document_counters',
            },
        ),

        # ====================================================================
        # Receipts
        # ====================================================================
        migrations.CreateModel(
            name='ReceiptDocument',
            fields=_document_fields() + _void_fields() + [
                ('document_date', models.DateField(default=django.utils.timezone.localdate, verbose_name='Document Date')),
                ('supplier_document_type', models.CharField(default='invoice', max_length=30, verbose_name='Supplier Document Type')),
                ('supplier_document_number', models.CharField(blank=True, max_length=50, verbose_name='Supplier Document Number')),
                ('total', models.DecimalField(decimal_places=2, default=0, max_digits=14, verbose_name='Total')),
                ('supplier', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='receipts',
                    to='partners.supplier',
                    verbose_name='Supplier',
                )),
            ],
            options={
                'verbose_name': 'Receipt',
                'verbose_name_plural': 'Receipts',
                'db_table': 'stock_receipts',
                'ordering': ['-created_at', '-id'],
                'abstract': False,
                'indexes': [
                    models.Index(fields=['supplier', '-document_date'], name='idx_receipt_supplier'),
                    models.Index(fields=['status'], name='idx_receipt_status'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReceiptLine',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('line_number', models.PositiveSmallIntegerField(verbose_name='Line Number')),
                ('quantity', models.IntegerField(verbose_name='Quantity')),
                ('unit_price', models.DecimalField(decimal_places=2, max_digits=12, verbose_name='Unit Price')),
                ('batch_code', models.CharField(blank=True, max_length=100, null=True, verbose_name='Batch Code')),
                ('expiration_date', models.DateField(blank=True, null=True, verbose_name='Expiration Date')),
                ('lot', models.OneToOneField(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='receipt_line',
                    to='stock.stocklot',
                    verbose_name='Lot',
                )),
                ('product', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='receipt_lines',
                    to='products.product',
                    verbose_name='Product',
                )),
                ('receipt', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='lines',
                    to='stock.receiptdocument',
                    verbose_name='Receipt',
                )),
            ],
            options={
                'db_table': 'stock_receipt_lines',
                'ordering': ['receipt', 'line_number'],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(quantity__gt=0),
                        name='receipt_line_quantity_positive',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(unit_price__gte=0),
                        name='receipt_line_price_non_negative',
                    ),
                    models.UniqueConstraint(
                        fields=('receipt', 'line_number'),
                        name='unique_receipt_line_number',
                    ),
                ],
            },
        ),

        # ====================================================================
        # Issues
        # ====================================================================
        migrations.CreateModel(
            name='IssueDocument',
            fields=_document_fields() + _void_fields() + [
                ('kind', models.CharField(
                    choices=[
                        ('sale', 'Sale'),
                        ('consignment', 'Consignment'),
                        ('bag_transfer', 'Bag Transfer'),
                        ('donation', 'Donation'),
                        ('sample', 'Sample'),
                    ],
                    max_length=20,
                    verbose_name='Kind',
                )),
                ('document_date', models.DateField(default=django.utils.timezone.localdate, verbose_name='Document Date')),
                ('billed', models.BooleanField(default=False, verbose_name='Billed')),
                ('invoice_number', models.CharField(blank=True, max_length=50, verbose_name='Invoice Number')),
                ('billed_at', models.DateTimeField(blank=True, null=True, verbose_name='Billed At')),
                ('bag', models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='issues',
                    to='partners.bag',
                    verbose_name='Bag',
                )),
                ('client', models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='issues',
                    to='partners.client',
                    verbose_name='Client',
                )),
            ],
            options={
                'verbose_name': 'Issue',
                'verbose_name_plural': 'Issues',
                'db_table': 'stock_issues',
                'ordering': ['-created_at', '-id'],
                'abstract': False,
                'indexes': [
                    models.Index(fields=['kind', 'status'], name='idx_issue_kind_status'),
                    models.Index(fields=['client', 'billed'], name='idx_issue_client_billed'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=~models.Q(kind='consignment') | models.Q(client__isnull=False),
                        name='issue_consignment_requires_client',
                    ),
                    models.CheckConstraint(
                        condition=~models.Q(kind='bag_transfer') | models.Q(bag__isnull=False),
                        name='issue_bag_transfer_requires_bag',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='IssueLine',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('line_number', models.PositiveSmallIntegerField(verbose_name='Line Number')),
                ('quantity', models.IntegerField(verbose_name='Quantity')),
                ('unit_price', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True, verbose_name='Unit Price')),
                ('requested_batch_code', models.CharField(blank=True, max_length=100, verbose_name='Requested Batch Code')),
                ('issue', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='lines',
                    to='stock.issuedocument',
                    verbose_name='Issue',
                )),
                ('lot', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='issue_lines',
                    to='stock.stocklot',
                    verbose_name='Lot',
                )),
                ('product', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='issue_lines',
                    to='products.product',
                    verbose_name='Product',
                )),
            ],
            options={
                'db_table': 'stock_issue_lines',
                'ordering': ['issue', 'line_number'],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(quantity__gt=0),
                        name='issue_line_quantity_positive',
                    ),
                    models.UniqueConstraint(
                        fields=('issue', 'line_number'),
                        name='unique_issue_line_number',
                    ),
                ],
            },
        ),

        # ====================================================================
        # Adjustments & transfers
        # ====================================================================
        migrations.CreateModel(
            name='AdjustmentDocument',
            fields=_document_fields() + [
                ('previous_quantity', models.IntegerField(verbose_name='Previous Quantity')),
                ('new_quantity', models.IntegerField(verbose_name='New Quantity')),
                ('quantity_delta', models.IntegerField(verbose_name='Quantity Delta')),
                ('reason', models.CharField(
                    choices=[
                        ('physical_count', 'Physical Count'),
                        ('damage', 'Damage'),
                        ('expiry', 'Expiry'),
                        ('loss', 'Loss'),
                        ('correction', 'Correction'),
                        ('other', 'Other'),
                    ],
                    max_length=30,
                    verbose_name='Reason',
                )),
                ('lot', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='adjustments',
                    to='stock.stocklot',
                    verbose_name='Lot',
                )),
            ],
            options={
                'verbose_name': 'Adjustment',
                'verbose_name_plural': 'Adjustments',
                'db_table': 'stock_adjustments',
                'ordering': ['-created_at', '-id'],
                'abstract': False,
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(new_quantity__gte=0),
                        name='adjustment_new_quantity_non_negative',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            quantity_delta=models.F('new_quantity') - models.F('previous_quantity')
                        ),
                        name='adjustment_delta_consistent',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='TransferDocument',
            fields=_document_fields() + [
                ('quantity', models.IntegerField(verbose_name='Quantity')),
                ('destination_lot', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='transfers_in',
                    to='stock.stocklot',
                    verbose_name='Destination Lot',
                )),
                ('source_lot', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='transfers_out',
                    to='stock.stocklot',
                    verbose_name='Source Lot',
                )),
            ],
            options={
                'verbose_name': 'Transfer',
                'verbose_name_plural': 'Transfers',
                'db_table': 'stock_transfers',
                'ordering': ['-created_at', '-id'],
                'abstract': False,
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(quantity__gt=0),
                        name='transfer_quantity_positive',
                    ),
                    models.CheckConstraint(
                        condition=~models.Q(source_lot=models.F('destination_lot')),
                        name='transfer_distinct_lots',
                    ),
                ],
            },
        ),
    ]
