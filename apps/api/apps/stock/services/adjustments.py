"""
Adjustments: set a lot's on-hand quantity to an absolute value (e.g. after a
physical count) and record the difference in the kardex.
"""
from django.db import transaction

from apps.core.observability import metrics
from apps.core.observability.events import log_document_posted

from ..exceptions import BusinessRuleError, ValidationError
from ..instrumentation import instrument_operation
from ..models import (
    AdjustmentDocument,
    AdjustmentReasonChoices,
    DocumentSeriesChoices,
    DocumentTypeChoices,
    MovementTypeChoices,
)
from ..types import AdjustmentRequest, AdjustmentResult
from .documents import create_numbered_document, find_replay, resolve_actor
from .ledger import apply_movement, lock_lots


def _document_fingerprint(document):
    return {
        'lot_id': document.lot_id,
        'new_quantity': document.new_quantity,
        'reason': document.reason,
    }


def _adjustment_result(document, replayed=False):
    return AdjustmentResult(
        document_id=document.id,
        number=document.number,
        lot_id=document.lot_id,
        previous_quantity=document.previous_quantity,
        new_quantity=document.new_quantity,
        quantity_delta=document.quantity_delta,
        replayed=replayed,
    )


@instrument_operation('adjust')
@transaction.atomic
def adjust(request: AdjustmentRequest, actor_id) -> AdjustmentResult:
    """
    Set a lot's quantity to ``request.new_quantity``.

    Raises:
        ValidationError: negative/non-integer quantity or unknown reason
        NotFoundError: unknown lot or actor
        BusinessRuleError: the lot already holds that quantity
    """
    replay = find_replay(
        AdjustmentDocument,
        request.idempotency_key,
        DocumentTypeChoices.ADJUSTMENT,
        {'lot_id': request.lot_id, 'new_quantity': request.new_quantity, 'reason': request.reason},
        _document_fingerprint,
    )
    if replay is not None:
        return _adjustment_result(replay, replayed=True)

    errors = {}
    new_quantity = request.new_quantity
    if not isinstance(new_quantity, int) or isinstance(new_quantity, bool) or new_quantity < 0:
        errors['new_quantity'] = ['New quantity must be an integer >= 0.']
    if request.reason not in AdjustmentReasonChoices.values:
        errors['reason'] = [f"Unknown adjustment reason '{request.reason}'."]
    if errors:
        raise ValidationError(errors)

    resolve_actor(actor_id)
    lot = lock_lots([request.lot_id])[request.lot_id]

    previous_quantity = lot.current_quantity
    delta = new_quantity - previous_quantity
    if delta == 0:
        raise BusinessRuleError(
            f'Lot {lot.id} already holds {new_quantity}; nothing to adjust.'
        )

    def build(number):
        return AdjustmentDocument.objects.create(
            number=number,
            lot=lot,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            quantity_delta=delta,
            reason=request.reason,
            notes=request.notes,
            idempotency_key=request.idempotency_key or None,
            actor_id=actor_id,
        )

    document = create_numbered_document(DocumentSeriesChoices.ADJUSTMENT, build)

    apply_movement(
        lot,
        delta,
        movement_type=MovementTypeChoices.ADJUSTMENT,
        document_type=DocumentTypeChoices.ADJUSTMENT,
        document=document,
        actor_id=actor_id,
        reason=request.reason,
        notes=request.notes,
    )

    metrics.stock_documents_posted_total.labels(document_type=DocumentTypeChoices.ADJUSTMENT).inc()
    log_document_posted(
        DocumentTypeChoices.ADJUSTMENT,
        document,
        lines_count=1,
        total_quantity=abs(delta),
        lot_id=str(lot.id),
        quantity_delta=delta,
        reason=request.reason,
    )

    return _adjustment_result(document)
