"""
Kardex integrity and document numbering tests.

Test coverage:
1. Kardex rows are append-only (model, queryset, database constraints)
2. Lot balance = initial quantity + later kardex deltas, across every operation
3. reconcile_lots detects tampered balances
4. Sequential numbering, seeding from existing documents, collision retry
"""
import logging
from datetime import date
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction
from django.db.models import Sum
from prometheus_client import REGISTRY

from apps.stock import services
from apps.stock.exceptions import (
    BusinessRuleError,
    ConflictError,
    InsufficientStockError,
    ValidationError,
)
from apps.stock.models import (
    DocumentCounter,
    DocumentSeriesChoices,
    MovementTypeChoices,
    ReceiptDocument,
    StockLot,
    StockMovement,
)
from apps.stock.types import (
    AdjustmentRequest,
    IssueLineRequest,
    IssueRequest,
    ReceiptLineRequest,
    ReceiveRequest,
    TransferRequest,
)


def _sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0


def _receive_one(user, supplier, product, quantity=10):
    return services.receive(
        ReceiveRequest(
            supplier_id=supplier.id,
            lines=[ReceiptLineRequest(product.id, quantity, Decimal('1.00'), 'N-1', date(2027, 1, 1))],
        ),
        actor_id=user.id,
    )


@pytest.mark.django_db
class TestKardexAppendOnly:
    """Kardex rows can never be rewritten."""

    def test_saving_existing_row_raises(self, product, receive_lot):
        lot = receive_lot(product, 10)
        movement = StockMovement.objects.get(lot=lot)
        movement.notes = 'edited'

        with pytest.raises(BusinessRuleError):
            movement.save()

    def test_deleting_row_raises(self, product, receive_lot):
        lot = receive_lot(product, 10)

        with pytest.raises(BusinessRuleError):
            StockMovement.objects.get(lot=lot).delete()

    def test_bulk_update_and_delete_raise(self, product, receive_lot):
        receive_lot(product, 10)

        with pytest.raises(BusinessRuleError):
            StockMovement.objects.filter(product=product).update(notes='x')
        with pytest.raises(BusinessRuleError):
            StockMovement.objects.filter(product=product).delete()

        assert StockMovement.objects.filter(product=product).count() == 1

    def test_zero_delta_rejected_by_database(self, user, product, receive_lot):
        lot = receive_lot(product, 10)
        movement = StockMovement.objects.get(lot=lot)

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                StockMovement.objects.create(
                    product=product,
                    lot=lot,
                    movement_type=MovementTypeChoices.ADJUSTMENT,
                    document_type=movement.document_type,
                    document_id=movement.document_id,
                    document_number=movement.document_number,
                    quantity_delta=0,
                    balance_before=10,
                    balance_after=10,
                    actor=user,
                )

    def test_inconsistent_balance_rejected_by_database(self, user, product, receive_lot):
        lot = receive_lot(product, 10)
        movement = StockMovement.objects.get(lot=lot)

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                StockMovement.objects.create(
                    product=product,
                    lot=lot,
                    movement_type=MovementTypeChoices.ADJUSTMENT,
                    document_type=movement.document_type,
                    document_id=movement.document_id,
                    document_number=movement.document_number,
                    quantity_delta=5,
                    balance_before=10,
                    balance_after=12,
                    actor=user,
                )


@pytest.mark.django_db
class TestLotBalanceInvariant:
    """current_quantity always agrees with the kardex."""

    def test_balance_matches_kardex_after_mixed_operations(
        self, user, product, client_partner, receive_lot
    ):
        lot_a = receive_lot(product, 100)
        lot_b = receive_lot(product, 50)

        sale = services.issue(
            IssueRequest(kind='sale', client_id=client_partner.id, lines=[IssueLineRequest(product.id, 30)]),
            actor_id=user.id,
        )
        services.transfer(
            TransferRequest(source_lot_id=lot_b.id, destination_lot_id=lot_a.id, quantity=20),
            actor_id=user.id,
        )
        services.adjust(AdjustmentRequest(lot_id=lot_b.id, new_quantity=25, reason='physical_count'), actor_id=user.id)
        services.void_issue(sale.document_id, actor_id=user.id)

        for lot in StockLot.objects.filter(product=product):
            later_deltas = lot.movements.exclude(
                movement_type=MovementTypeChoices.RECEIPT
            ).aggregate(total=Sum('quantity_delta'))['total'] or 0
            all_deltas = lot.movements.aggregate(total=Sum('quantity_delta'))['total']

            assert lot.current_quantity == lot.initial_quantity + later_deltas
            assert lot.current_quantity == all_deltas

        report = services.reconcile_lots()
        assert report.consistent
        assert report.lots_checked == 2

    def test_every_row_chains_balances(self, user, product, client_partner, receive_lot):
        lot = receive_lot(product, 40)
        for quantity in (5, 10, 3):
            services.issue(
                IssueRequest(kind='sale', client_id=client_partner.id, lines=[IssueLineRequest(product.id, quantity)]),
                actor_id=user.id,
            )

        rows = list(lot.movements.order_by('created_at', 'id'))
        for previous, current in zip(rows, rows[1:]):
            assert current.balance_before == previous.balance_after
        assert rows[-1].balance_after == 22

    def test_reconcile_reports_tampered_lot(self, product, receive_lot):
        lot = receive_lot(product, 10)
        untouched = receive_lot(product, 5)
        StockLot.objects.filter(pk=lot.pk).update(current_quantity=99)
        before = _sample('stock_ledger_mismatches_total')

        report = services.reconcile_lots()

        assert not report.consistent
        assert [m.lot_id for m in report.mismatches] == [lot.id]
        assert report.mismatches[0].ledger_quantity == 10
        assert _sample('stock_ledger_mismatches_total') == before + 1

        assert services.reconcile_lots([untouched.id]).consistent

    def test_reconcile_checkpoint_names_failed_check(self, caplog, product, receive_lot):
        lot = receive_lot(product, 10)
        caplog.set_level(logging.INFO)

        services.reconcile_lots()
        StockLot.objects.filter(pk=lot.pk).update(current_quantity=7)
        services.reconcile_lots()

        clean, tampered = [
            r for r in caplog.records
            if getattr(r, 'checkpoint', None) == 'lot_balances_match_kardex'
        ]
        assert clean.status == 'passed'
        assert clean.checks == {'balances_match': True, 'states_match': True}
        assert tampered.status == 'failed'
        assert tampered.checks == {'balances_match': False, 'states_match': True}
        assert tampered.mismatched_lot_ids == [lot.id]


@pytest.mark.django_db
class TestDocumentNumbering:
    """PREFIX-NNNNNN numbering per series."""

    def test_numbers_are_sequential_per_series(self, user, supplier, product):
        first = _receive_one(user, supplier, product)
        second = _receive_one(user, supplier, product)

        assert (first.number, second.number) == ('ENT-000001', 'ENT-000002')
        assert DocumentCounter.objects.get(series=DocumentSeriesChoices.RECEIPT).last_value == 2

    def test_series_prefixes(self, db):
        assert services.next_number(DocumentSeriesChoices.ISSUE) == 'SAL-000001'
        assert services.next_number(DocumentSeriesChoices.TRANSFER) == 'TRF-000001'
        assert services.next_number(DocumentSeriesChoices.ADJUSTMENT) == 'AJU-000001'
        assert services.next_number(DocumentSeriesChoices.ISSUE) == 'SAL-000002'

    def test_unknown_series(self, db):
        with pytest.raises(ValidationError):
            services.next_number('invoice')

    def test_counter_seeded_from_existing_documents(self, user, supplier, product):
        ReceiptDocument.objects.create(number='ENT-000041', supplier=supplier, actor=user)

        result = _receive_one(user, supplier, product)

        assert result.number == 'ENT-000042'

    def test_collision_retries_with_next_number(self, user, supplier, product):
        DocumentCounter.objects.create(series=DocumentSeriesChoices.RECEIPT, last_value=4)
        ReceiptDocument.objects.create(number='ENT-000005', supplier=supplier, actor=user)
        before = _sample('stock_document_number_conflicts_total', series='receipt')

        result = _receive_one(user, supplier, product)

        assert result.number == 'ENT-000006'
        assert _sample('stock_document_number_conflicts_total', series='receipt') == before + 1

    def test_collision_without_retries_is_conflict(self, settings, user, supplier, product):
        settings.STOCK_DOCUMENT_NUMBER_RETRIES = 0
        DocumentCounter.objects.create(series=DocumentSeriesChoices.RECEIPT, last_value=4)
        ReceiptDocument.objects.create(number='ENT-000005', supplier=supplier, actor=user)

        with pytest.raises(ConflictError):
            _receive_one(user, supplier, product)

        assert StockLot.objects.count() == 0
        assert DocumentCounter.objects.get(series=DocumentSeriesChoices.RECEIPT).last_value == 4

    def test_failed_posting_does_not_consume_number(self, user, supplier, product, client_partner):
        _receive_one(user, supplier, product, quantity=5)

        with pytest.raises(InsufficientStockError):
            services.issue(
                IssueRequest(kind='sale', client_id=client_partner.id, lines=[IssueLineRequest(product.id, 50)]),
                actor_id=user.id,
            )
        result = services.issue(
            IssueRequest(kind='sale', client_id=client_partner.id, lines=[IssueLineRequest(product.id, 1)]),
            actor_id=user.id,
        )

        assert result.number == 'SAL-000001'
