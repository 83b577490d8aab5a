"""
Adjustment and transfer tests.

Adjustments set an absolute quantity; transfers move quantity between two lots
of one product and must conserve the total.
"""
from datetime import date

import pytest

from apps.stock import services
from apps.stock.exceptions import (
    BusinessRuleError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from apps.stock.models import (
    AdjustmentDocument,
    LotStateChoices,
    MovementTypeChoices,
    StockMovement,
    TransferDocument,
)
from apps.stock.types import AdjustmentRequest, TransferRequest


@pytest.mark.django_db
class TestAdjust:
    """Absolute-set adjustments."""

    def test_adjust_to_zero_depletes_lot(self, user, product, receive_lot):
        lot = receive_lot(product, 30)

        result = services.adjust(
            AdjustmentRequest(lot_id=lot.id, new_quantity=0, reason='damage', notes='Water damage'),
            actor_id=user.id,
        )

        lot.refresh_from_db()
        assert result.quantity_delta == -30
        assert result.previous_quantity == 30
        assert result.number == 'AJU-000001'
        assert lot.current_quantity == 0
        assert lot.state == LotStateChoices.DEPLETED

        movement = StockMovement.objects.get(movement_type=MovementTypeChoices.ADJUSTMENT)
        assert movement.quantity_delta == -30
        assert movement.balance_before == 30
        assert movement.balance_after == 0
        assert movement.reason == 'damage'
        assert movement.notes == 'Water damage'

    def test_adjust_up_revives_depleted_lot(self, user, product, receive_lot):
        lot = receive_lot(product, 10)
        services.adjust(AdjustmentRequest(lot_id=lot.id, new_quantity=0, reason='loss'), actor_id=user.id)

        result = services.adjust(
            AdjustmentRequest(lot_id=lot.id, new_quantity=12, reason='physical_count'),
            actor_id=user.id,
        )

        lot.refresh_from_db()
        assert result.quantity_delta == 12
        assert lot.current_quantity == 12
        assert lot.state == LotStateChoices.AVAILABLE
        assert AdjustmentDocument.objects.count() == 2

    def test_negative_quantity_and_bad_reason_reported_together(self, user, product, receive_lot):
        lot = receive_lot(product, 10)

        with pytest.raises(ValidationError) as exc_info:
            services.adjust(AdjustmentRequest(lot_id=lot.id, new_quantity=-1, reason='whim'), actor_id=user.id)

        assert set(exc_info.value.message_dict) == {'new_quantity', 'reason'}

    def test_zero_delta_rejected(self, user, product, receive_lot):
        lot = receive_lot(product, 10)

        with pytest.raises(BusinessRuleError, match='nothing to adjust'):
            services.adjust(AdjustmentRequest(lot_id=lot.id, new_quantity=10, reason='physical_count'), actor_id=user.id)

        assert AdjustmentDocument.objects.count() == 0

    def test_unknown_lot(self, user):
        with pytest.raises(NotFoundError):
            services.adjust(AdjustmentRequest(lot_id=999999, new_quantity=1, reason='correction'), actor_id=user.id)


@pytest.mark.django_db
class TestTransfer:
    """Lot-to-lot transfers."""

    def test_transfer_conserves_total(self, user, product, receive_lot):
        source = receive_lot(product, 40, batch_code='SRC', expiration_date=date(2027, 1, 1))
        destination = receive_lot(product, 5, batch_code='DST', expiration_date=date(2027, 1, 1))

        result = services.transfer(
            TransferRequest(source_lot_id=source.id, destination_lot_id=destination.id, quantity=15),
            actor_id=user.id,
        )

        source.refresh_from_db()
        destination.refresh_from_db()
        assert source.current_quantity == 25
        assert destination.current_quantity == 20
        assert result.source_before + result.destination_before == result.source_after + result.destination_after
        assert result.number == 'TRF-000001'

    def test_transfer_writes_two_correlated_entries(self, user, product, receive_lot):
        source = receive_lot(product, 40)
        destination = receive_lot(product, 5)

        result = services.transfer(
            TransferRequest(source_lot_id=source.id, destination_lot_id=destination.id, quantity=15),
            actor_id=user.id,
        )

        entries = StockMovement.objects.filter(document_number=result.number).order_by('id')
        assert [(e.movement_type, e.lot_id, e.quantity_delta) for e in entries] == [
            (MovementTypeChoices.TRANSFER_OUT, source.id, -15),
            (MovementTypeChoices.TRANSFER_IN, destination.id, 15),
        ]
        assert {e.document_id for e in entries} == {result.document_id}

    def test_transfer_whole_lot_depletes_source_and_revives_destination(self, user, product, receive_lot):
        source = receive_lot(product, 8)
        destination = receive_lot(product, 3)
        services.adjust(AdjustmentRequest(lot_id=destination.id, new_quantity=0, reason='loss'), actor_id=user.id)

        services.transfer(
            TransferRequest(source_lot_id=source.id, destination_lot_id=destination.id, quantity=8),
            actor_id=user.id,
        )

        source.refresh_from_db()
        destination.refresh_from_db()
        assert source.state == LotStateChoices.DEPLETED
        assert destination.state == LotStateChoices.AVAILABLE
        assert destination.current_quantity == 8

    def test_transfer_from_higher_id_to_lower_id(self, user, product, receive_lot):
        first = receive_lot(product, 10)
        second = receive_lot(product, 10)

        result = services.transfer(
            TransferRequest(source_lot_id=second.id, destination_lot_id=first.id, quantity=4),
            actor_id=user.id,
        )

        assert (result.source_after, result.destination_after) == (6, 14)

    def test_mismatched_product(self, user, product, another_product, receive_lot):
        source = receive_lot(product, 10)
        destination = receive_lot(another_product, 10)

        with pytest.raises(BusinessRuleError, match='mismatched product'):
            services.transfer(
                TransferRequest(source_lot_id=source.id, destination_lot_id=destination.id, quantity=1),
                actor_id=user.id,
            )

    def test_insufficient_source(self, user, product, receive_lot):
        source = receive_lot(product, 10)
        destination = receive_lot(product, 10)

        with pytest.raises(InsufficientStockError):
            services.transfer(
                TransferRequest(source_lot_id=source.id, destination_lot_id=destination.id, quantity=11),
                actor_id=user.id,
            )

        source.refresh_from_db()
        assert source.current_quantity == 10
        assert TransferDocument.objects.count() == 0

    @pytest.mark.parametrize('quantity', [0, -3])
    def test_non_positive_quantity(self, user, product, receive_lot, quantity):
        source = receive_lot(product, 10)
        destination = receive_lot(product, 10)

        with pytest.raises(BusinessRuleError):
            services.transfer(
                TransferRequest(source_lot_id=source.id, destination_lot_id=destination.id, quantity=quantity),
                actor_id=user.id,
            )

    def test_same_lot_rejected(self, user, product, receive_lot):
        lot = receive_lot(product, 10)

        with pytest.raises(BusinessRuleError):
            services.transfer(
                TransferRequest(source_lot_id=lot.id, destination_lot_id=lot.id, quantity=1),
                actor_id=user.id,
            )

    def test_unknown_lot(self, user, product, receive_lot):
        lot = receive_lot(product, 10)

        with pytest.raises(NotFoundError):
            services.transfer(
                TransferRequest(source_lot_id=lot.id, destination_lot_id=999999, quantity=1),
                actor_id=user.id,
            )
