"""
Receiving: post supplier receipts and void them.

Each receipt line opens exactly one new lot and appends its opening
``receipt`` kardex row.
"""
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date

from apps.core.observability import metrics
from apps.core.observability.events import (
    log_document_posted,
    log_document_voided,
    log_void_blocked,
)
from apps.core.observability.tracing import add_span_attribute
from apps.partners.models import Supplier

from ..exceptions import BusinessRuleError, ValidationError
from ..instrumentation import instrument_operation
from ..models import (
    DocumentSeriesChoices,
    DocumentStatusChoices,
    DocumentTypeChoices,
    MovementTypeChoices,
    ReceiptDocument,
    ReceiptLine,
)
from ..types import ReceiptResult, ReceiveRequest, VoidResult
from .documents import (
    create_numbered_document,
    find_replay,
    get_partner,
    load_products,
    lock_document,
    resolve_actor,
)
from .ledger import apply_movement, lock_lots, open_lot, record_movement

CENTS = Decimal('0.01')


def _parse_expiration(value):
    """Return a date, or raise ValueError for anything that is not a real date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        parsed = parse_date(value.strip())
        if parsed is None:
            raise ValueError(value)
        return parsed
    raise ValueError(value)


def _is_positive_int(value):
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _validate_lines(lines, products):
    """
    Check every receipt line and collect all problems before failing.

    Returns normalized (product, quantity, unit_price, batch_code, expiration_date)
    tuples.
    """
    errors = {}
    normalized = []

    for index, line in enumerate(lines):
        key = f'lines[{index}]'
        product = products[line.product_id]

        if not _is_positive_int(line.quantity):
            errors[f'{key}.quantity'] = ['Quantity must be a positive integer.']

        try:
            unit_price = Decimal(str(line.unit_price))
            if not unit_price.is_finite() or unit_price < 0:
                raise InvalidOperation
            unit_price = unit_price.quantize(CENTS)
        except (InvalidOperation, ValueError):
            errors[f'{key}.unit_price'] = ['Unit price must be a number >= 0.']
            unit_price = None

        batch_code = (line.batch_code or '').strip() or None
        if product.requires_lot and batch_code is None:
            errors[f'{key}.batch_code'] = [f'Batch code is required for product {product.code}.']

        expiration_date = None
        if line.expiration_date not in (None, ''):
            try:
                expiration_date = _parse_expiration(line.expiration_date)
            except ValueError:
                errors[f'{key}.expiration_date'] = ['Expiration date must be a valid YYYY-MM-DD date.']
        elif product.requires_expiration:
            errors[f'{key}.expiration_date'] = [f'Expiration date is required for product {product.code}.']

        normalized.append((product, line.quantity, unit_price, batch_code, expiration_date))

    if errors:
        raise ValidationError(errors)
    return normalized


def _document_fingerprint(document):
    return {
        'supplier_id': document.supplier_id,
        'lines': [
            (line.product_id, line.quantity, line.batch_code)
            for line in document.lines.order_by('line_number')
        ],
    }


def _receipt_result(document, replayed=False):
    return ReceiptResult(
        document_id=document.id,
        number=document.number,
        total=document.total,
        lot_ids=list(document.lines.order_by('line_number').values_list('lot_id', flat=True)),
        replayed=replayed,
    )


@instrument_operation('receive')
@transaction.atomic
def receive(request: ReceiveRequest, actor_id) -> ReceiptResult:
    """
    Post a receipt: one new lot and one ``receipt`` kardex row per line.

    Raises:
        ValidationError: empty document or any invalid line (all lines reported)
        NotFoundError: unknown actor, supplier or products
    """
    replay = find_replay(
        ReceiptDocument,
        request.idempotency_key,
        DocumentTypeChoices.RECEIPT,
        {
            'supplier_id': request.supplier_id,
            'lines': [
                (line.product_id, line.quantity, (line.batch_code or '').strip() or None)
                for line in request.lines
            ],
        },
        _document_fingerprint,
    )
    if replay is not None:
        return _receipt_result(replay, replayed=True)

    if not request.lines:
        raise ValidationError({'lines': ['A receipt needs at least one line.']})

    resolve_actor(actor_id)
    supplier = get_partner(Supplier, request.supplier_id)
    products = load_products(line.product_id for line in request.lines)
    lines = _validate_lines(request.lines, products)

    total = sum((quantity * unit_price for _, quantity, unit_price, _, _ in lines), Decimal('0'))

    def build(number):
        return ReceiptDocument.objects.create(
            number=number,
            supplier=supplier,
            document_date=request.document_date or timezone.localdate(),
            supplier_document_type=request.supplier_document_type,
            supplier_document_number=request.supplier_document_number,
            total=total,
            notes=request.notes,
            idempotency_key=request.idempotency_key or None,
            actor_id=actor_id,
        )

    document = create_numbered_document(DocumentSeriesChoices.RECEIPT, build)

    lot_ids = []
    for line_number, (product, quantity, unit_price, batch_code, expiration_date) in enumerate(lines, start=1):
        lot = open_lot(
            product=product,
            supplier=supplier,
            quantity=quantity,
            batch_code=batch_code,
            expiration_date=expiration_date,
        )
        ReceiptLine.objects.create(
            receipt=document,
            line_number=line_number,
            product=product,
            lot=lot,
            quantity=quantity,
            unit_price=unit_price,
            batch_code=batch_code,
            expiration_date=expiration_date,
        )
        record_movement(
            lot=lot,
            movement_type=MovementTypeChoices.RECEIPT,
            document_type=DocumentTypeChoices.RECEIPT,
            document=document,
            quantity_delta=quantity,
            balance_before=0,
            actor_id=actor_id,
            unit_cost=unit_price,
            notes=request.notes,
        )
        lot_ids.append(lot.id)

    total_quantity = sum(quantity for _, quantity, _, _, _ in lines)
    metrics.stock_documents_posted_total.labels(document_type=DocumentTypeChoices.RECEIPT).inc()
    log_document_posted(
        DocumentTypeChoices.RECEIPT,
        document,
        lines_count=len(lines),
        total_quantity=total_quantity,
        supplier_id=str(supplier.id),
        total=str(total),
    )
    add_span_attribute('stock.document_number', document.number)
    add_span_attribute('stock.lines_count', len(lines))

    return ReceiptResult(document_id=document.id, number=document.number, total=total, lot_ids=lot_ids)


@instrument_operation('void_receipt')
@transaction.atomic
def void_receipt(document_id, actor_id) -> VoidResult:
    """
    Reverse a posted receipt.

    Every lot the receipt opened must still hold at least the received
    quantity; otherwise part of it was issued or transferred and the receipt
    can no longer be undone.

    Raises:
        NotFoundError: unknown receipt or actor
        BusinessRuleError: already voided, or a lot was partially consumed
    """
    resolve_actor(actor_id)
    document = lock_document(ReceiptDocument, document_id)

    if document.status == DocumentStatusChoices.VOIDED:
        log_void_blocked(DocumentTypeChoices.RECEIPT, document, reason='already_voided')
        raise BusinessRuleError(f'Receipt {document.number} is already voided.')

    lines = list(document.lines.order_by('line_number'))
    lots = lock_lots(line.lot_id for line in lines)

    consumed = [
        lots[line.lot_id] for line in lines
        if lots[line.lot_id].current_quantity < line.quantity
    ]
    if consumed:
        batches = ', '.join(lot.batch_code or f'lot {lot.id}' for lot in consumed)
        log_void_blocked(
            DocumentTypeChoices.RECEIPT,
            document,
            reason='lot_partially_consumed',
            lot_ids=[lot.id for lot in consumed],
        )
        raise BusinessRuleError(
            f'Cannot void {document.number}: lot has been partially consumed ({batches}).'
        )

    for line in lines:
        apply_movement(
            lots[line.lot_id],
            -line.quantity,
            movement_type=MovementTypeChoices.VOID_RECEIPT,
            document_type=DocumentTypeChoices.RECEIPT,
            document=document,
            actor_id=actor_id,
            unit_cost=line.unit_price,
        )

    document.status = DocumentStatusChoices.VOIDED
    document.voided_at = timezone.now()
    document.voided_by_id = actor_id
    document.save(update_fields=['status', 'voided_at', 'voided_by'])

    metrics.stock_documents_voided_total.labels(document_type=DocumentTypeChoices.RECEIPT).inc()
    log_document_voided(DocumentTypeChoices.RECEIPT, document, lines_count=len(lines))

    return VoidResult(
        document_id=document.id,
        number=document.number,
        status=document.status,
        lines_reversed=len(lines),
    )
