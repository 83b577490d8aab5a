"""
Transfers: move quantity from one lot to another lot of the same product.
"""
from django.db import transaction

from apps.core.observability import metrics
from apps.core.observability.events import log_consistency_checkpoint, log_document_posted

from ..exceptions import BusinessRuleError, InsufficientStockError
from ..instrumentation import instrument_operation
from ..models import (
    DocumentSeriesChoices,
    DocumentTypeChoices,
    MovementTypeChoices,
    StockMovement,
    TransferDocument,
)
from ..types import TransferRequest, TransferResult
from .documents import create_numbered_document, find_replay, resolve_actor
from .ledger import apply_movement, lock_lots


def _document_fingerprint(document):
    return {
        'source_lot_id': document.source_lot_id,
        'destination_lot_id': document.destination_lot_id,
        'quantity': document.quantity,
    }


def _replayed_result(document):
    movements = {
        m.movement_type: m
        for m in StockMovement.objects.filter(
            document_type=DocumentTypeChoices.TRANSFER,
            document_id=document.id,
        )
    }
    out = movements[MovementTypeChoices.TRANSFER_OUT]
    into = movements[MovementTypeChoices.TRANSFER_IN]
    return TransferResult(
        document_id=document.id,
        number=document.number,
        source_lot_id=document.source_lot_id,
        destination_lot_id=document.destination_lot_id,
        quantity=document.quantity,
        source_before=out.balance_before,
        source_after=out.balance_after,
        destination_before=into.balance_before,
        destination_after=into.balance_after,
        replayed=True,
    )


@instrument_operation('transfer')
@transaction.atomic
def transfer(request: TransferRequest, actor_id) -> TransferResult:
    """
    Move ``request.quantity`` units between two lots of one product.

    Both lots are locked in ascending id order. Two kardex rows
    (transfer_out / transfer_in) share the transfer's number.

    Raises:
        BusinessRuleError: non-positive quantity, same lot, mismatched product
        NotFoundError: unknown lot or actor
        InsufficientStockError: source holds less than the quantity
    """
    replay = find_replay(
        TransferDocument,
        request.idempotency_key,
        DocumentTypeChoices.TRANSFER,
        {
            'source_lot_id': request.source_lot_id,
            'destination_lot_id': request.destination_lot_id,
            'quantity': request.quantity,
        },
        _document_fingerprint,
    )
    if replay is not None:
        return _replayed_result(replay)

    quantity = request.quantity
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise BusinessRuleError('Transfer quantity must be a positive integer.')
    if request.source_lot_id == request.destination_lot_id:
        raise BusinessRuleError('Source and destination lots must differ.')

    resolve_actor(actor_id)
    lots = lock_lots([request.source_lot_id, request.destination_lot_id])
    source = lots[request.source_lot_id]
    destination = lots[request.destination_lot_id]

    if source.product_id != destination.product_id:
        raise BusinessRuleError(
            f'Cannot transfer between lots of a mismatched product '
            f'({source.product_id} -> {destination.product_id}).'
        )
    if source.current_quantity < quantity:
        raise InsufficientStockError(
            f'Lot {source.id} holds {source.current_quantity}, cannot transfer {quantity}.',
            product_id=source.product_id,
            requested=quantity,
            best_available=source.current_quantity,
            batch_code=source.batch_code,
        )

    source_before = source.current_quantity
    destination_before = destination.current_quantity

    def build(number):
        return TransferDocument.objects.create(
            number=number,
            source_lot=source,
            destination_lot=destination,
            quantity=quantity,
            notes=request.notes,
            idempotency_key=request.idempotency_key or None,
            actor_id=actor_id,
        )

    document = create_numbered_document(DocumentSeriesChoices.TRANSFER, build)

    for lot, delta, movement_type in (
        (source, -quantity, MovementTypeChoices.TRANSFER_OUT),
        (destination, quantity, MovementTypeChoices.TRANSFER_IN),
    ):
        apply_movement(
            lot,
            delta,
            movement_type=movement_type,
            document_type=DocumentTypeChoices.TRANSFER,
            document=document,
            actor_id=actor_id,
            notes=request.notes,
        )

    metrics.stock_documents_posted_total.labels(document_type=DocumentTypeChoices.TRANSFER).inc()
    log_document_posted(
        DocumentTypeChoices.TRANSFER,
        document,
        lines_count=2,
        total_quantity=quantity,
        source_lot_id=str(source.id),
        destination_lot_id=str(destination.id),
    )
    log_consistency_checkpoint(
        'transfer_conserves_quantity',
        entity_ids={'transfer_id': str(document.id)},
        checks_passed={
            'sum_preserved': (
                source_before + destination_before
                == source.current_quantity + destination.current_quantity
            ),
            'source_non_negative': source.current_quantity >= 0,
        },
    )

    return TransferResult(
        document_id=document.id,
        number=document.number,
        source_lot_id=source.id,
        destination_lot_id=destination.id,
        quantity=quantity,
        source_before=source_before,
        source_after=source.current_quantity,
        destination_before=destination_before,
        destination_after=destination.current_quantity,
    )
