"""
Product catalog for the inventory ledger.

Generated manually on 2026-10-18
"""
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=50, unique=True, verbose_name='Code')),
                ('reference', models.CharField(blank=True, max_length=100, verbose_name='Reference')),
                ('name', models.CharField(max_length=255, verbose_name='Name')),
                ('unit_of_measure', models.CharField(default='UNIT', max_length=20, verbose_name='Unit of Measure')),
                ('requires_lot', models.BooleanField(default=True, verbose_name='Requires Lot')),
                ('requires_expiration', models.BooleanField(default=True, verbose_name='Requires Expiration')),
                ('purchase_price', models.DecimalField(decimal_places=2, default=0, max_digits=12, verbose_name='Purchase Price')),
                ('sale_price', models.DecimalField(decimal_places=2, default=0, max_digits=12, verbose_name='Sale Price')),
                ('min_stock', models.PositiveIntegerField(default=0, verbose_name='Minimum Stock')),
                ('max_stock', models.PositiveIntegerField(default=0, verbose_name='Maximum Stock')),
                ('is_active', models.BooleanField(default=True, verbose_name='Active')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Updated At')),
            ],
            options={
                'verbose_name': 'Product',
                'verbose_name_plural': 'Products',
                'db_table': 'products',
                'ordering': ['code'],
                'indexes': [
                    models.Index(fields=['name'], name='idx_product_name'),
                    models.Index(fields=['is_active'], name='idx_product_active'),
                ],
            },
        ),
    ]
