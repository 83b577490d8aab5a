"""
Issuance: post issue documents, void them and mark them billed.

Lot selection (FIFO by expiration):
    For each line, the candidates are the available lots of the product that
    can cover the whole line quantity on their own (restricted to the
    requested batch when one is given). The earliest expiring candidate wins;
    lots without an expiration date come last; ties go to the oldest lot.
    A line is never split across lots.
"""
from datetime import date
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.utils import timezone

from apps.core.observability import metrics
from apps.core.observability.events import (
    log_document_posted,
    log_document_voided,
    log_domain_event,
    log_insufficient_stock,
    log_void_blocked,
)
from apps.core.observability.tracing import add_span_attribute
from apps.partners.models import Bag, Client

from ..exceptions import BusinessRuleError, InsufficientStockError, ValidationError
from ..instrumentation import instrument_operation
from ..models import (
    BILLABLE_ISSUE_KINDS,
    DocumentSeriesChoices,
    DocumentStatusChoices,
    DocumentTypeChoices,
    IssueDocument,
    IssueKindChoices,
    IssueLine,
    LotStateChoices,
    MovementTypeChoices,
    StockLot,
)
from ..types import BillingResult, IssueRequest, IssueResult, LotAllocation, VoidResult
from .documents import (
    create_numbered_document,
    find_replay,
    get_partner,
    load_products,
    lock_document,
    resolve_actor,
)
from .ledger import apply_movement, lock_lots


def fifo_key(lot):
    """Sort key: earliest expiration first, no expiration last, then oldest lot."""
    return (
        lot.expiration_date is None,
        lot.expiration_date or date.max,
        lot.created_at,
        lot.id,
    )


def select_lot(candidates, quantity, remaining, requested_batch_code=None):
    """
    Pick the lot for one line.

    Args:
        candidates: lots of the product, already in FIFO order
        quantity: line quantity
        remaining: lot id -> balance left after earlier lines of the document
        requested_batch_code: restrict to this batch when given

    Returns:
        (lot or None, best single-lot quantity seen)
    """
    best_available = 0
    for lot in candidates:
        if requested_batch_code and lot.batch_code != requested_batch_code:
            continue
        available = remaining[lot.id]
        if available >= quantity and available > 0:
            return lot, available
        best_available = max(best_available, available)
    return None, best_available


def _validate_request(request):
    errors = {}

    if request.kind not in IssueKindChoices.values:
        errors['kind'] = [f"Unknown issue kind '{request.kind}'."]
    if request.kind == IssueKindChoices.CONSIGNMENT and request.client_id is None:
        errors['client_id'] = ['A consignment needs a client.']
    if request.kind == IssueKindChoices.BAG_TRANSFER and request.bag_id is None:
        errors['bag_id'] = ['A bag transfer needs a destination bag.']

    if not request.lines:
        errors['lines'] = ['An issue needs at least one line.']

    prices = []
    for index, line in enumerate(request.lines):
        key = f'lines[{index}]'
        quantity = line.quantity
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            errors[f'{key}.quantity'] = ['Quantity must be a positive integer.']

        unit_price = None
        if line.unit_price is not None:
            try:
                unit_price = Decimal(str(line.unit_price))
                if not unit_price.is_finite() or unit_price < 0:
                    raise InvalidOperation
                unit_price = unit_price.quantize(Decimal('0.01'))
            except (InvalidOperation, ValueError):
                errors[f'{key}.unit_price'] = ['Unit price must be a number >= 0.']
        prices.append(unit_price)

    if errors:
        raise ValidationError(errors)
    return prices


def _lock_candidates(product_ids):
    """
    Lock every available lot of the given products in ascending id order.

    Returns product id -> lots in FIFO order.
    """
    lots = StockLot.objects.select_for_update().filter(
        product_id__in=set(product_ids),
        state=LotStateChoices.AVAILABLE,
    ).order_by('id')

    by_product = {}
    for lot in lots:
        by_product.setdefault(lot.product_id, []).append(lot)
    for candidates in by_product.values():
        candidates.sort(key=fifo_key)
    return by_product


def _document_fingerprint(document):
    return {
        'kind': document.kind,
        'client_id': document.client_id,
        'bag_id': document.bag_id,
        'lines': [
            (line.product_id, line.quantity, line.requested_batch_code)
            for line in document.lines.order_by('line_number')
        ],
    }


def _issue_result(document, replayed=False):
    allocations = [
        LotAllocation(
            line_number=line.line_number,
            product_id=line.product_id,
            lot_id=line.lot_id,
            batch_code=line.lot.batch_code,
            expiration_date=line.lot.expiration_date,
            quantity=line.quantity,
        )
        for line in document.lines.select_related('lot').order_by('line_number')
    ]
    return IssueResult(
        document_id=document.id,
        number=document.number,
        allocations=allocations,
        replayed=replayed,
    )


@instrument_operation('issue')
@transaction.atomic
def issue(request: IssueRequest, actor_id) -> IssueResult:
    """
    Post an issue document, depleting one lot per line.

    Lines are allocated in order; a later line sees the balances left by the
    earlier ones. Allocation is planned for the whole document before anything
    is written.

    Raises:
        ValidationError: bad kind, missing destination, empty or invalid lines
        NotFoundError: unknown actor, client, bag or products
        InsufficientStockError: no single lot can cover a line
    """
    replay = find_replay(
        IssueDocument,
        request.idempotency_key,
        DocumentTypeChoices.ISSUE,
        {
            'kind': request.kind,
            'client_id': request.client_id,
            'bag_id': request.bag_id,
            'lines': [
                (line.product_id, line.quantity, line.requested_batch_code or '')
                for line in request.lines
            ],
        },
        _document_fingerprint,
    )
    if replay is not None:
        return _issue_result(replay, replayed=True)

    prices = _validate_request(request)

    resolve_actor(actor_id)
    client = get_partner(Client, request.client_id) if request.client_id is not None else None
    bag = get_partner(Bag, request.bag_id) if request.bag_id is not None else None
    products = load_products(line.product_id for line in request.lines)

    candidates = _lock_candidates(products.keys())
    remaining = {
        lot.id: lot.current_quantity
        for lots in candidates.values() for lot in lots
    }

    plan = []
    for line, unit_price in zip(request.lines, prices):
        product = products[line.product_id]
        lot, best_available = select_lot(
            candidates.get(product.id, []),
            line.quantity,
            remaining,
            requested_batch_code=line.requested_batch_code,
        )
        if lot is None:
            metrics.stock_insufficient_stock_total.inc()
            log_insufficient_stock(
                product.id,
                line.quantity,
                best_available,
                batch_code=line.requested_batch_code,
            )
            batch_note = f' in batch {line.requested_batch_code}' if line.requested_batch_code else ''
            raise InsufficientStockError(
                f'Insufficient stock for product {product.code}{batch_note}: '
                f'requested {line.quantity}, best single lot has {best_available}.',
                product_id=product.id,
                requested=line.quantity,
                best_available=best_available,
                batch_code=line.requested_batch_code,
            )
        remaining[lot.id] -= line.quantity
        price = unit_price if unit_price is not None else product.sale_price
        plan.append((line, product, lot, price))

    def build(number):
        return IssueDocument.objects.create(
            number=number,
            kind=request.kind,
            client=client,
            bag=bag,
            document_date=request.document_date or timezone.localdate(),
            notes=request.notes,
            idempotency_key=request.idempotency_key or None,
            actor_id=actor_id,
        )

    document = create_numbered_document(DocumentSeriesChoices.ISSUE, build)

    allocations = []
    for line_number, (line, product, lot, price) in enumerate(plan, start=1):
        IssueLine.objects.create(
            issue=document,
            line_number=line_number,
            product=product,
            lot=lot,
            quantity=line.quantity,
            unit_price=price,
            requested_batch_code=line.requested_batch_code or '',
        )
        apply_movement(
            lot,
            -line.quantity,
            movement_type=MovementTypeChoices.ISSUE,
            document_type=DocumentTypeChoices.ISSUE,
            document=document,
            actor_id=actor_id,
            unit_cost=price,
            notes=request.notes,
        )
        allocations.append(LotAllocation(
            line_number=line_number,
            product_id=product.id,
            lot_id=lot.id,
            batch_code=lot.batch_code,
            expiration_date=lot.expiration_date,
            quantity=line.quantity,
        ))

    metrics.stock_documents_posted_total.labels(document_type=DocumentTypeChoices.ISSUE).inc()
    log_document_posted(
        DocumentTypeChoices.ISSUE,
        document,
        lines_count=len(allocations),
        total_quantity=sum(a.quantity for a in allocations),
        kind=document.kind,
        client_id=str(client.id) if client else None,
        bag_id=str(bag.id) if bag else None,
    )
    add_span_attribute('stock.document_number', document.number)
    add_span_attribute('stock.lines_count', len(allocations))

    return IssueResult(document_id=document.id, number=document.number, allocations=allocations)


@instrument_operation('void_issue')
@transaction.atomic
def void_issue(document_id, actor_id) -> VoidResult:
    """
    Reverse a posted, unbilled issue: every line's quantity goes back to the
    lot it came from.

    Raises:
        NotFoundError: unknown issue or actor
        BusinessRuleError: already voided or already billed
    """
    resolve_actor(actor_id)
    document = lock_document(IssueDocument, document_id)

    if document.status == DocumentStatusChoices.VOIDED:
        log_void_blocked(DocumentTypeChoices.ISSUE, document, reason='already_voided')
        raise BusinessRuleError(f'Issue {document.number} is already voided.')
    if document.billed:
        log_void_blocked(DocumentTypeChoices.ISSUE, document, reason='already_billed')
        raise BusinessRuleError(
            f'Issue {document.number} is billed ({document.invoice_number}) and cannot be voided.'
        )

    lines = list(document.lines.order_by('line_number'))
    lots = lock_lots(line.lot_id for line in lines)

    for line in lines:
        apply_movement(
            lots[line.lot_id],
            line.quantity,
            movement_type=MovementTypeChoices.VOID_ISSUE,
            document_type=DocumentTypeChoices.ISSUE,
            document=document,
            actor_id=actor_id,
            unit_cost=line.unit_price,
        )

    document.status = DocumentStatusChoices.VOIDED
    document.voided_at = timezone.now()
    document.voided_by_id = actor_id
    document.save(update_fields=['status', 'voided_at', 'voided_by'])

    metrics.stock_documents_voided_total.labels(document_type=DocumentTypeChoices.ISSUE).inc()
    log_document_voided(DocumentTypeChoices.ISSUE, document, lines_count=len(lines))

    return VoidResult(
        document_id=document.id,
        number=document.number,
        status=document.status,
        lines_reversed=len(lines),
    )


@instrument_operation('mark_issue_billed')
@transaction.atomic
def mark_issue_billed(issue_id, invoice_number, actor_id) -> BillingResult:
    """
    Record the invoice for a posted sale or consignment.

    A billed issue can no longer be voided.
    """
    invoice_number = (invoice_number or '').strip()
    if not invoice_number:
        raise ValidationError({'invoice_number': ['Invoice number is required.']})

    resolve_actor(actor_id)
    document = lock_document(IssueDocument, issue_id)

    if document.kind not in BILLABLE_ISSUE_KINDS:
        raise BusinessRuleError(f'Issue {document.number} ({document.kind}) is not billable.')
    if document.status == DocumentStatusChoices.VOIDED:
        raise BusinessRuleError(f'Issue {document.number} is voided and cannot be billed.')
    if document.billed:
        raise BusinessRuleError(
            f'Issue {document.number} is already billed ({document.invoice_number}).'
        )

    document.billed = True
    document.invoice_number = invoice_number
    document.billed_at = timezone.now()
    document.save(update_fields=['billed', 'invoice_number', 'billed_at'])

    log_domain_event(
        'issue_billed',
        entity_type='IssueDocument',
        entity_id=str(document.id),
        entity_ids={'document_number': document.number},
        invoice_number=invoice_number,
    )

    return BillingResult(document_id=document.id, number=document.number, invoice_number=invoice_number)
