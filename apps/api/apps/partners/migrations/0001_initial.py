"""
Suppliers, clients and bags referenced by the inventory ledger.

Generated manually on 2026-10-18
"""
from django.db import migrations, models


def _partner_fields(extra):
    return [
        ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
        ('code', models.CharField(max_length=50, unique=True, verbose_name='Code')),
        ('name', models.CharField(max_length=255, verbose_name='Name')),
        ('is_active', models.BooleanField(default=True, verbose_name='Active')),
        ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created At')),
        ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Updated At')),
    ] + extra


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Supplier',
            fields=_partner_fields([
                ('tax_id', models.CharField(blank=True, max_length=30, verbose_name='Tax ID')),
            ]),
            options={
                'verbose_name': 'Supplier',
                'verbose_name_plural': 'Suppliers',
                'db_table': 'suppliers',
                'ordering': ['name'],
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='Client',
            fields=_partner_fields([
                ('tax_id', models.CharField(blank=True, max_length=30, verbose_name='Tax ID')),
            ]),
            options={
                'verbose_name': 'Client',
                'verbose_name_plural': 'Clients',
                'db_table': 'clients',
                'ordering': ['name'],
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='Bag',
            fields=_partner_fields([
                ('responsible', models.CharField(blank=True, max_length=255, verbose_name='Responsible')),
            ]),
            options={
                'verbose_name': 'Bag',
                'verbose_name_plural': 'Bags',
                'db_table': 'bags',
                'ordering': ['name'],
                'abstract': False,
            },
        ),
    ]
