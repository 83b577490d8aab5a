"""
Global test fixtures for pytest.

Provides reusable fixtures for ledger testing:
- Acting user
- Partners (supplier, client, bag)
- Products with and without lot/expiration tracking
- A factory that receives one lot through the real receiving service
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone

from apps.core.observability.correlation import clear_operation_context
from apps.partners.models import Bag, Client, Supplier
from apps.products.models import Product
from apps.stock import services
from apps.stock.models import StockLot
from apps.stock.types import ReceiptLineRequest, ReceiveRequest


@pytest.fixture(autouse=True)
def _reset_operation_context():
    yield
    clear_operation_context()


# ============================================================================
# Actors & partners
# ============================================================================

@pytest.fixture
def user(db):
    """Warehouse operator performing the postings."""
    return get_user_model().objects.create_user(
        username='warehouse',
        email='warehouse@example.com',
        password='testpass123'
    )


@pytest.fixture
def supplier(db):
    return Supplier.objects.create(code='SUP-001', name='Medical Supplies SA', tax_id='900123456')


@pytest.fixture
def client_partner(db):
    """Client receiving sales and consignments."""
    return Client.objects.create(code='CLI-001', name='Clinica Central', tax_id='800111222')


@pytest.fixture
def bag(db):
    """Field sales kit."""
    return Bag.objects.create(code='BAG-01', name='Maleta Norte', responsible='Field Rep')


# ============================================================================
# Products
# ============================================================================

@pytest.fixture
def product(db):
    """Lot- and expiration-tracked product (the common case)."""
    return Product.objects.create(
        code='GAUZE-10',
        name='Sterile Gauze 10x10',
        requires_lot=True,
        requires_expiration=True,
        purchase_price=Decimal('2.50'),
        sale_price=Decimal('4.00'),
        min_stock=20,
    )


@pytest.fixture
def another_product(db):
    return Product.objects.create(
        code='SYRINGE-5',
        name='Syringe 5ml',
        requires_lot=True,
        requires_expiration=True,
        purchase_price=Decimal('0.80'),
        sale_price=Decimal('1.50'),
        min_stock=100,
    )


@pytest.fixture
def untracked_product(db):
    """Product without lot or expiration tracking."""
    return Product.objects.create(
        code='TAPE-01',
        name='Adhesive Tape',
        requires_lot=False,
        requires_expiration=False,
        sale_price=Decimal('3.00'),
    )


# ============================================================================
# Stock
# ============================================================================

@pytest.fixture
def receive_lot(user, supplier):
    """
    Factory receiving a single lot through ``services.receive``.

    Usage:
        lot = receive_lot(product, 100, batch_code='A', expiration_date=date(2025, 1, 1))
    """
    counter = {'n': 0}

    def _receive(product, quantity, batch_code=None, expiration_date=None, unit_price=Decimal('1.00')):
        counter['n'] += 1
        if batch_code is None and product.requires_lot:
            batch_code = f'LOT-{counter["n"]:03d}'
        if expiration_date is None and product.requires_expiration:
            expiration_date = timezone.localdate() + timedelta(days=365)

        result = services.receive(
            ReceiveRequest(
                supplier_id=supplier.id,
                lines=[ReceiptLineRequest(
                    product_id=product.id,
                    quantity=quantity,
                    unit_price=unit_price,
                    batch_code=batch_code,
                    expiration_date=expiration_date,
                )],
            ),
            actor_id=user.id,
        )
        return StockLot.objects.get(pk=result.lot_ids[0])

    return _receive


@pytest.fixture
def fifo_lots(product, receive_lot):
    """Lot A (100, expires 2025-01-01) and lot B (50, expires 2025-06-01)."""
    lot_a = receive_lot(product, 100, batch_code='A', expiration_date=date(2025, 1, 1))
    lot_b = receive_lot(product, 50, batch_code='B', expiration_date=date(2025, 6, 1))
    return lot_a, lot_b
