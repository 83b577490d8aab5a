"""
Idempotency and all-or-nothing tests.

A repeated idempotency key returns the original document without posting
again. Any failure inside a posting leaves lots, kardex and documents exactly
as before the call, and storage errors are translated to ledger errors.
"""
import logging
from datetime import date
from decimal import Decimal

import pytest
from django.db import DatabaseError, IntegrityError

from apps.stock import services
from apps.stock.exceptions import ConflictError, InfrastructureError, InsufficientStockError
from apps.stock.models import (
    AdjustmentDocument,
    IssueDocument,
    ReceiptDocument,
    StockLot,
    StockMovement,
    TransferDocument,
)
from apps.stock.types import (
    AdjustmentRequest,
    IssueLineRequest,
    IssueRequest,
    ReceiptLineRequest,
    ReceiveRequest,
    TransferRequest,
)


@pytest.mark.django_db
class TestIdempotency:
    """Replays answered from the existing document."""

    def test_receive_replay(self, user, supplier, product):
        request = ReceiveRequest(
            supplier_id=supplier.id,
            lines=[ReceiptLineRequest(product.id, 10, Decimal('1.00'), 'R-1', date(2027, 1, 1))],
            idempotency_key='receipt-abc',
        )

        first = services.receive(request, actor_id=user.id)
        second = services.receive(request, actor_id=user.id)

        assert second.replayed is True
        assert second.document_id == first.document_id
        assert second.lot_ids == first.lot_ids
        assert ReceiptDocument.objects.count() == 1
        assert StockLot.objects.count() == 1

    def test_issue_replay_deducts_once(self, user, product, client_partner, receive_lot):
        lot = receive_lot(product, 20)
        request = IssueRequest(
            kind='sale',
            client_id=client_partner.id,
            lines=[IssueLineRequest(product.id, 8)],
            idempotency_key='issue-xyz',
        )

        first = services.issue(request, actor_id=user.id)
        second = services.issue(request, actor_id=user.id)

        lot.refresh_from_db()
        assert lot.current_quantity == 12
        assert second.replayed is True
        assert second.number == first.number
        assert second.allocations[0].lot_id == lot.id
        assert IssueDocument.objects.count() == 1

    def test_adjust_replay(self, user, product, receive_lot):
        lot = receive_lot(product, 20)
        request = AdjustmentRequest(lot_id=lot.id, new_quantity=15, reason='physical_count', idempotency_key='adj-1')

        services.adjust(request, actor_id=user.id)
        replay = services.adjust(request, actor_id=user.id)

        assert replay.replayed is True
        assert replay.quantity_delta == -5
        assert AdjustmentDocument.objects.count() == 1

    def test_transfer_replay(self, user, product, receive_lot):
        source = receive_lot(product, 20)
        destination = receive_lot(product, 1)
        request = TransferRequest(
            source_lot_id=source.id,
            destination_lot_id=destination.id,
            quantity=5,
            idempotency_key='trf-1',
        )

        first = services.transfer(request, actor_id=user.id)
        replay = services.transfer(request, actor_id=user.id)

        source.refresh_from_db()
        assert source.current_quantity == 15
        assert replay.replayed is True
        assert (replay.source_before, replay.source_after) == (first.source_before, first.source_after)
        assert TransferDocument.objects.count() == 1

    def test_keys_are_scoped_per_document_type(self, user, supplier, product, client_partner):
        services.receive(
            ReceiveRequest(
                supplier_id=supplier.id,
                lines=[ReceiptLineRequest(product.id, 10, Decimal('1.00'), 'R-1', date(2027, 1, 1))],
                idempotency_key='shared-key',
            ),
            actor_id=user.id,
        )

        result = services.issue(
            IssueRequest(
                kind='sale',
                client_id=client_partner.id,
                lines=[IssueLineRequest(product.id, 1)],
                idempotency_key='shared-key',
            ),
            actor_id=user.id,
        )

        assert result.replayed is False


@pytest.mark.django_db
class TestIdempotencyKeyReuse:
    """A key reused for a different request is rejected, never replayed."""

    def test_adjust_other_lot_with_same_key(self, caplog, user, product, receive_lot):
        lot_a = receive_lot(product, 40)
        lot_b = receive_lot(product, 40)
        services.adjust(
            AdjustmentRequest(lot_id=lot_a.id, new_quantity=10, reason='physical_count', idempotency_key='K'),
            actor_id=user.id,
        )
        caplog.set_level(logging.INFO)

        with pytest.raises(ConflictError, match='lot_id'):
            services.adjust(
                AdjustmentRequest(lot_id=lot_b.id, new_quantity=5, reason='physical_count', idempotency_key='K'),
                actor_id=user.id,
            )

        lot_b.refresh_from_db()
        assert lot_b.current_quantity == 40
        assert AdjustmentDocument.objects.count() == 1
        [conflict] = [
            r for r in caplog.records
            if getattr(r, 'event', None) == 'adjustment_idempotency_conflict'
        ]
        assert conflict.mismatched_fields == ['lot_id', 'new_quantity']
        assert not [
            r for r in caplog.records
            if getattr(r, 'event', None) == 'adjustment_idempotent_replay'
        ]

    def test_transfer_other_quantity_with_same_key(self, user, product, receive_lot):
        source = receive_lot(product, 20)
        destination = receive_lot(product, 1)
        services.transfer(
            TransferRequest(source_lot_id=source.id, destination_lot_id=destination.id, quantity=5, idempotency_key='T'),
            actor_id=user.id,
        )

        with pytest.raises(ConflictError, match='quantity'):
            services.transfer(
                TransferRequest(source_lot_id=source.id, destination_lot_id=destination.id, quantity=6, idempotency_key='T'),
                actor_id=user.id,
            )

        source.refresh_from_db()
        assert source.current_quantity == 15

    def test_receive_other_lines_with_same_key(self, user, supplier, product, another_product):
        services.receive(
            ReceiveRequest(
                supplier_id=supplier.id,
                lines=[ReceiptLineRequest(product.id, 10, Decimal('1.00'), 'R-1', date(2027, 1, 1))],
                idempotency_key='R',
            ),
            actor_id=user.id,
        )

        with pytest.raises(ConflictError, match='lines'):
            services.receive(
                ReceiveRequest(
                    supplier_id=supplier.id,
                    lines=[ReceiptLineRequest(another_product.id, 10, Decimal('1.00'), 'R-1', date(2027, 1, 1))],
                    idempotency_key='R',
                ),
                actor_id=user.id,
            )

        assert StockLot.objects.count() == 1

    def test_issue_other_kind_with_same_key(self, user, product, client_partner, receive_lot):
        lot = receive_lot(product, 20)
        services.issue(
            IssueRequest(kind='sale', client_id=client_partner.id, lines=[IssueLineRequest(product.id, 3)], idempotency_key='I'),
            actor_id=user.id,
        )

        with pytest.raises(ConflictError, match='kind'):
            services.issue(
                IssueRequest(
                    kind='consignment',
                    client_id=client_partner.id,
                    lines=[IssueLineRequest(product.id, 3)],
                    idempotency_key='I',
                ),
                actor_id=user.id,
            )

        lot.refresh_from_db()
        assert lot.current_quantity == 17
        assert IssueDocument.objects.count() == 1


@pytest.mark.django_db
class TestRollback:
    """Nothing survives a failed posting."""

    def test_second_line_failure_rolls_back_first(self, user, product, another_product, client_partner, receive_lot):
        lot = receive_lot(product, 50)
        other_lot = receive_lot(another_product, 5)
        movements_before = StockMovement.objects.count()

        with pytest.raises(InsufficientStockError):
            services.issue(
                IssueRequest(
                    kind='sale',
                    client_id=client_partner.id,
                    lines=[IssueLineRequest(product.id, 10), IssueLineRequest(another_product.id, 6)],
                ),
                actor_id=user.id,
            )

        lot.refresh_from_db()
        other_lot.refresh_from_db()
        assert lot.current_quantity == 50
        assert other_lot.current_quantity == 5
        assert IssueDocument.objects.count() == 0
        assert StockMovement.objects.count() == movements_before

    def test_integrity_error_becomes_conflict(self, monkeypatch, user, supplier, product):
        def broken_open_lot(**kwargs):
            raise IntegrityError('duplicate key value violates unique constraint')

        monkeypatch.setattr('apps.stock.services.receiving.open_lot', broken_open_lot)

        with pytest.raises(ConflictError) as exc_info:
            services.receive(
                ReceiveRequest(
                    supplier_id=supplier.id,
                    lines=[ReceiptLineRequest(product.id, 10, Decimal('1.00'), 'R-1', date(2027, 1, 1))],
                ),
                actor_id=user.id,
            )

        assert isinstance(exc_info.value.__cause__, IntegrityError)
        assert ReceiptDocument.objects.count() == 0

    def test_database_error_becomes_infrastructure_error(self, monkeypatch, user, product, receive_lot):
        lot = receive_lot(product, 10)

        def broken_apply_movement(*args, **kwargs):
            raise DatabaseError('connection lost')

        monkeypatch.setattr('apps.stock.services.adjustments.apply_movement', broken_apply_movement)

        with pytest.raises(InfrastructureError):
            services.adjust(AdjustmentRequest(lot_id=lot.id, new_quantity=3, reason='loss'), actor_id=user.id)

        lot.refresh_from_db()
        assert lot.current_quantity == 10
        assert AdjustmentDocument.objects.count() == 0
