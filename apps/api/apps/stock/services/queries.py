"""
Read-only stock queries.

Nothing here locks or writes (apart from metrics and logs in
``reconcile_lots``); results may trail an in-flight posting.
"""
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db.models import Count, DecimalField, ExpressionWrapper, F, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from apps.core.observability import metrics
from apps.core.observability.events import log_consistency_checkpoint
from apps.products.models import Product

from ..exceptions import NotFoundError, ValidationError
from ..models import (
    DocumentStatusChoices,
    IssueDocument,
    IssueKindChoices,
    IssueLine,
    LotStateChoices,
    MovementTypeChoices,
    ReceiptDocument,
    ReceiptLine,
    StockLot,
    StockMovement,
)
from ..types import (
    IssueFilter,
    KardexFilter,
    LotFilter,
    LotMismatch,
    LowStockPolicy,
    ReceiptFilter,
    ReconciliationReport,
)

MONEY = DecimalField(max_digits=16, decimal_places=2)
CENTS = Decimal('0.01')


def _require_product(product_id):
    if not Product.objects.filter(pk=product_id).exists():
        raise NotFoundError(f'Product {product_id} not found.')


def _available_stock_expression():
    return Coalesce(
        Sum('lots__current_quantity', filter=Q(lots__state=LotStateChoices.AVAILABLE)),
        0,
    )


def _resolve_days(days):
    if days is None:
        return settings.STOCK_EXPIRING_SOON_DAYS
    if not isinstance(days, int) or isinstance(days, bool) or days < 0:
        raise ValidationError({'days': ['Days must be an integer >= 0.']})
    return days


def _line_value():
    return ExpressionWrapper(F('lines__quantity') * F('lines__unit_price'), output_field=MONEY)


def available_stock(product_id) -> int:
    """Units on hand across all available lots of the product."""
    _require_product(product_id)
    total = StockLot.objects.filter(
        product_id=product_id,
        state=LotStateChoices.AVAILABLE,
    ).aggregate(total=Sum('current_quantity'))['total']
    return total or 0


def low_stock(policy: LowStockPolicy = None):
    """
    Products whose available stock is at or below their min_stock.

    Returns:
        Product queryset annotated with ``available_quantity``, lowest
        coverage first.
    """
    policy = policy or LowStockPolicy()

    products = Product.objects.annotate(available_quantity=_available_stock_expression())
    if policy.active_only:
        products = products.filter(is_active=True)
    if not policy.include_unset_minimum:
        products = products.filter(min_stock__gt=0)

    return products.filter(
        available_quantity__lte=F('min_stock')
    ).order_by('available_quantity', 'code')


def expiring_soon(days=None):
    """Lots with stock expiring within [today, today + days], soonest first."""
    days = _resolve_days(days)
    today = timezone.localdate()

    return StockLot.objects.filter(
        current_quantity__gt=0,
        expiration_date__gte=today,
        expiration_date__lte=today + timedelta(days=days),
    ).select_related('product', 'supplier').order_by('expiration_date', 'id')


def expired_lots():
    """Lots still holding stock whose expiration date has passed."""
    return StockLot.objects.filter(
        current_quantity__gt=0,
        expiration_date__lt=timezone.localdate(),
    ).select_related('product', 'supplier').order_by('expiration_date', 'id')


def kardex(product_id, filters: KardexFilter = None, limit=None):
    """
    Kardex rows of a product, newest first.

    ``limit`` defaults to STOCK_KARDEX_DEFAULT_LIMIT and is capped at
    STOCK_KARDEX_MAX_LIMIT.
    """
    _require_product(product_id)
    filters = filters or KardexFilter()

    if limit is None:
        limit = settings.STOCK_KARDEX_DEFAULT_LIMIT
    if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
        raise ValidationError({'limit': ['Limit must be a positive integer.']})
    limit = min(limit, settings.STOCK_KARDEX_MAX_LIMIT)

    if filters.movement_type and filters.movement_type not in MovementTypeChoices.values:
        raise ValidationError({'movement_type': [f"Unknown movement type '{filters.movement_type}'."]})
    if filters.date_from and filters.date_to and filters.date_from > filters.date_to:
        raise ValidationError({'date_from': ['date_from must not be after date_to.']})

    movements = StockMovement.objects.filter(product_id=product_id).select_related('lot')
    if filters.movement_type:
        movements = movements.filter(movement_type=filters.movement_type)
    if filters.lot_id is not None:
        movements = movements.filter(lot_id=filters.lot_id)
    if filters.date_from:
        movements = movements.filter(created_at__date__gte=filters.date_from)
    if filters.date_to:
        movements = movements.filter(created_at__date__lte=filters.date_to)

    return list(movements.order_by('-created_at', '-id')[:limit])


def lot_detail(lot_id):
    """Lot with its product, supplier and expiry information."""
    try:
        lot = StockLot.objects.select_related('product', 'supplier').get(pk=lot_id)
    except StockLot.DoesNotExist:
        raise NotFoundError(f'Lot {lot_id} not found.')

    return {
        'lot_id': lot.id,
        'product_id': lot.product_id,
        'product_code': lot.product.code,
        'product_name': lot.product.name,
        'supplier_id': lot.supplier_id,
        'supplier_code': lot.supplier.code,
        'batch_code': lot.batch_code,
        'expiration_date': lot.expiration_date,
        'days_until_expiry': lot.days_until_expiry,
        'is_expired': lot.is_expired,
        'initial_quantity': lot.initial_quantity,
        'current_quantity': lot.current_quantity,
        'state': lot.state,
        'created_at': lot.created_at,
    }


def list_lots(filters: LotFilter = None):
    """
    General inventory listing: lots by product, earliest expiration first.

    ``expiring_within_days`` keeps lots expiring on or before
    today + days, already expired ones included.
    """
    filters = filters or LotFilter()

    errors = {}
    if filters.state is not None and filters.state not in LotStateChoices.values:
        errors['state'] = [f"Unknown lot state '{filters.state}'."]
    days = filters.expiring_within_days
    if days is not None and (not isinstance(days, int) or isinstance(days, bool) or days < 0):
        errors['expiring_within_days'] = ['Days must be an integer >= 0.']
    if errors:
        raise ValidationError(errors)

    lots = StockLot.objects.select_related('product', 'supplier')
    if filters.state is not None:
        lots = lots.filter(state=filters.state)
    if filters.product_id is not None:
        lots = lots.filter(product_id=filters.product_id)
    if filters.supplier_id is not None:
        lots = lots.filter(supplier_id=filters.supplier_id)
    if days is not None:
        lots = lots.filter(expiration_date__lte=timezone.localdate() + timedelta(days=days))

    search = (filters.search or '').strip()
    if search:
        lots = lots.filter(
            Q(product__code__icontains=search)
            | Q(product__name__icontains=search)
            | Q(batch_code__icontains=search)
        )

    return lots.order_by(
        'product__code',
        F('expiration_date').asc(nulls_last=True),
        'created_at',
        'id',
    )


def inventory_summary(days=None):
    """
    Dashboard figures: active products, lots and units on hand, stock value
    at sale price, lots expiring within ``days`` and products below minimum.
    """
    days = _resolve_days(days)
    today = timezone.localdate()

    lots = StockLot.objects.filter(state=LotStateChoices.AVAILABLE)
    totals = lots.aggregate(
        lots_count=Count('id'),
        units=Coalesce(Sum('current_quantity'), 0),
        stock_value=Coalesce(
            Sum(ExpressionWrapper(F('current_quantity') * F('product__sale_price'), output_field=MONEY)),
            Decimal('0'),
            output_field=MONEY,
        ),
    )

    return {
        'active_products': Product.objects.filter(is_active=True).count(),
        'available_lots': totals['lots_count'],
        'units_on_hand': totals['units'],
        'stock_value': totals['stock_value'],
        'expiring_lots': lots.filter(
            expiration_date__gte=today,
            expiration_date__lte=today + timedelta(days=days),
        ).count(),
        'expired_lots': lots.filter(expiration_date__lt=today).count(),
        'low_stock_products': low_stock().count(),
    }


def pending_billing(client_id=None):
    """Posted consignments not yet invoiced, oldest first."""
    issues = IssueDocument.objects.filter(
        kind=IssueKindChoices.CONSIGNMENT,
        status=DocumentStatusChoices.POSTED,
        billed=False,
    )
    if client_id is not None:
        issues = issues.filter(client_id=client_id)

    issues = issues.select_related('client').annotate(
        units=Coalesce(Sum('lines__quantity'), 0),
        value=Coalesce(Sum(_line_value()), Decimal('0'), output_field=MONEY),
    ).order_by('document_date', 'id')

    today = timezone.localdate()
    return [
        {
            'issue_id': document.id,
            'number': document.number,
            'client_id': document.client_id,
            'client_code': document.client.code,
            'document_date': document.document_date,
            'units': document.units,
            'value': document.value,
            'days_pending': (today - document.document_date).days,
        }
        for document in issues
    ]


def bag_contents(bag_id=None):
    """Lines of posted bag transfers, grouped by bag then product."""
    lines = IssueLine.objects.filter(
        issue__kind=IssueKindChoices.BAG_TRANSFER,
        issue__status=DocumentStatusChoices.POSTED,
    )
    if bag_id is not None:
        lines = lines.filter(issue__bag_id=bag_id)

    lines = lines.select_related('issue__bag', 'product', 'lot').order_by(
        'issue__bag__code', 'product__code', 'lot__expiration_date', 'id'
    )
    return [
        {
            'bag_id': line.issue.bag_id,
            'bag_code': line.issue.bag.code,
            'issue_number': line.issue.number,
            'product_id': line.product_id,
            'product_code': line.product.code,
            'product_name': line.product.name,
            'lot_id': line.lot_id,
            'batch_code': line.lot.batch_code,
            'expiration_date': line.lot.expiration_date,
            'quantity': line.quantity,
        }
        for line in lines
    ]


# ============================================================================
# Documents
# ============================================================================

def _validate_document_filter(filters, **choices):
    """
    Check the period and every enum field of a document filter.

    ``choices`` maps filter attribute -> allowed values.
    """
    errors = {}
    if filters.date_from and filters.date_to and filters.date_from > filters.date_to:
        errors['date_from'] = ['date_from must not be after date_to.']
    for name, allowed in choices.items():
        value = getattr(filters, name)
        if value is not None and value not in allowed:
            errors[name] = [f"Unknown {name} '{value}'."]
    if errors:
        raise ValidationError(errors)


def _in_period(documents, date_from, date_to):
    if date_from:
        documents = documents.filter(document_date__gte=date_from)
    if date_to:
        documents = documents.filter(document_date__lte=date_to)
    return documents


def get_receipt(document_id):
    """Receipt header with its lines in line order."""
    try:
        document = ReceiptDocument.objects.select_related('supplier').get(pk=document_id)
    except ReceiptDocument.DoesNotExist:
        raise NotFoundError(f'Receipt {document_id} not found.')

    lines = document.lines.select_related('product').order_by('line_number')
    return {
        'document_id': document.id,
        'number': document.number,
        'supplier_id': document.supplier_id,
        'supplier_code': document.supplier.code,
        'supplier_name': document.supplier.name,
        'document_date': document.document_date,
        'supplier_document_type': document.supplier_document_type,
        'supplier_document_number': document.supplier_document_number,
        'total': document.total,
        'status': document.status,
        'notes': document.notes,
        'voided_at': document.voided_at,
        'created_at': document.created_at,
        'lines': [
            {
                'line_number': line.line_number,
                'product_id': line.product_id,
                'product_code': line.product.code,
                'product_name': line.product.name,
                'lot_id': line.lot_id,
                'batch_code': line.batch_code,
                'expiration_date': line.expiration_date,
                'quantity': line.quantity,
                'unit_price': line.unit_price,
                'subtotal': line.quantity * line.unit_price,
            }
            for line in lines
        ],
    }


def list_receipts(filters: ReceiptFilter = None):
    """
    Receipts, newest first, annotated with ``lines_count`` and ``units``.
    """
    filters = filters or ReceiptFilter()
    _validate_document_filter(filters, status=DocumentStatusChoices.values)

    receipts = _in_period(ReceiptDocument.objects.all(), filters.date_from, filters.date_to)
    if filters.supplier_id is not None:
        receipts = receipts.filter(supplier_id=filters.supplier_id)
    if filters.status is not None:
        receipts = receipts.filter(status=filters.status)

    search = (filters.search or '').strip()
    if search:
        receipts = receipts.filter(
            Q(number__icontains=search) | Q(supplier_document_number__icontains=search)
        )

    return receipts.select_related('supplier').annotate(
        lines_count=Count('lines'),
        units=Coalesce(Sum('lines__quantity'), 0),
    ).order_by('-document_date', '-id')


def receipt_statistics(date_from=None, date_to=None, supplier_id=None):
    """Totals over posted receipts; voided ones do not count."""
    if date_from and date_to and date_from > date_to:
        raise ValidationError({'date_from': ['date_from must not be after date_to.']})

    receipts = _in_period(
        ReceiptDocument.objects.filter(status=DocumentStatusChoices.POSTED),
        date_from,
        date_to,
    )
    if supplier_id is not None:
        receipts = receipts.filter(supplier_id=supplier_id)

    totals = receipts.aggregate(
        receipts=Count('id'),
        suppliers=Count('supplier', distinct=True),
        total_amount=Coalesce(Sum('total'), Decimal('0'), output_field=MONEY),
    )
    lines = ReceiptLine.objects.filter(receipt__in=receipts).aggregate(
        distinct_products=Count('product', distinct=True),
        units=Coalesce(Sum('quantity'), 0),
    )

    count = totals['receipts']
    average = (totals['total_amount'] / count).quantize(CENTS) if count else Decimal('0.00')
    return {
        'receipts': count,
        'suppliers': totals['suppliers'],
        'total_amount': totals['total_amount'],
        'average_amount': average,
        'distinct_products': lines['distinct_products'],
        'units': lines['units'],
    }


def get_issue(document_id):
    """Issue header with its lines and the lot each line drew from."""
    try:
        document = IssueDocument.objects.select_related('client', 'bag').get(pk=document_id)
    except IssueDocument.DoesNotExist:
        raise NotFoundError(f'Issue {document_id} not found.')

    lines = [
        {
            'line_number': line.line_number,
            'product_id': line.product_id,
            'product_code': line.product.code,
            'product_name': line.product.name,
            'lot_id': line.lot_id,
            'batch_code': line.lot.batch_code,
            'expiration_date': line.lot.expiration_date,
            'quantity': line.quantity,
            'unit_price': line.unit_price,
            'subtotal': line.quantity * (line.unit_price or Decimal('0')),
        }
        for line in document.lines.select_related('product', 'lot').order_by('line_number')
    ]
    return {
        'document_id': document.id,
        'number': document.number,
        'kind': document.kind,
        'client_id': document.client_id,
        'client_code': document.client.code if document.client else None,
        'bag_id': document.bag_id,
        'bag_code': document.bag.code if document.bag else None,
        'document_date': document.document_date,
        'status': document.status,
        'billed': document.billed,
        'invoice_number': document.invoice_number,
        'notes': document.notes,
        'voided_at': document.voided_at,
        'created_at': document.created_at,
        'total': sum((line['subtotal'] for line in lines), Decimal('0')),
        'lines': lines,
    }


def list_issues(filters: IssueFilter = None):
    """
    Issues, newest first, annotated with ``lines_count``, ``units`` and
    ``value``.
    """
    filters = filters or IssueFilter()
    _validate_document_filter(
        filters,
        kind=IssueKindChoices.values,
        status=DocumentStatusChoices.values,
    )

    issues = _in_period(IssueDocument.objects.all(), filters.date_from, filters.date_to)
    if filters.kind is not None:
        issues = issues.filter(kind=filters.kind)
    if filters.client_id is not None:
        issues = issues.filter(client_id=filters.client_id)
    if filters.bag_id is not None:
        issues = issues.filter(bag_id=filters.bag_id)
    if filters.status is not None:
        issues = issues.filter(status=filters.status)
    if filters.billed is not None:
        issues = issues.filter(billed=filters.billed)

    search = (filters.search or '').strip()
    if search:
        issues = issues.filter(Q(number__icontains=search) | Q(invoice_number__icontains=search))

    return issues.select_related('client', 'bag').annotate(
        lines_count=Count('lines'),
        units=Coalesce(Sum('lines__quantity'), 0),
        value=Coalesce(Sum(_line_value()), Decimal('0'), output_field=MONEY),
    ).order_by('-document_date', '-id')


def issue_statistics(date_from=None, date_to=None, kind=None):
    """Totals over posted issues, broken down by kind; voided ones do not count."""
    if date_from and date_to and date_from > date_to:
        raise ValidationError({'date_from': ['date_from must not be after date_to.']})
    if kind is not None and kind not in IssueKindChoices.values:
        raise ValidationError({'kind': [f"Unknown kind '{kind}'."]})

    issues = _in_period(
        IssueDocument.objects.filter(status=DocumentStatusChoices.POSTED),
        date_from,
        date_to,
    )
    if kind is not None:
        issues = issues.filter(kind=kind)

    totals = issues.aggregate(
        issues=Count('id'),
        clients=Count('client', distinct=True),
        bags=Count('bag', distinct=True),
    )
    by_kind = dict(
        issues.order_by().values('kind').annotate(count=Count('id')).values_list('kind', 'count')
    )
    lines = IssueLine.objects.filter(issue__in=issues).aggregate(
        distinct_products=Count('product', distinct=True),
        units=Coalesce(Sum('quantity'), 0),
        value=Coalesce(
            Sum(ExpressionWrapper(F('quantity') * F('unit_price'), output_field=MONEY)),
            Decimal('0'),
            output_field=MONEY,
        ),
    )

    return {
        'issues': totals['issues'],
        'by_kind': {choice: by_kind.get(choice, 0) for choice in IssueKindChoices.values},
        'clients': totals['clients'],
        'bags': totals['bags'],
        'distinct_products': lines['distinct_products'],
        'units': lines['units'],
        'value': lines['value'],
    }


def reconcile_lots(lot_ids=None) -> ReconciliationReport:
    """
    Recompute every lot balance from the kardex and report disagreements.

    A lot is consistent when current_quantity equals the sum of its kardex
    deltas and its state matches that quantity.
    """
    lots = StockLot.objects.order_by('id')
    movements = StockMovement.objects.all()
    if lot_ids is not None:
        lots = lots.filter(id__in=lot_ids)
        movements = movements.filter(lot_id__in=lot_ids)

    ledger = dict(
        movements.order_by().values('lot_id').annotate(
            total=Sum('quantity_delta')
        ).values_list('lot_id', 'total')
    )

    report = ReconciliationReport(lots_checked=0)
    for lot in lots:
        report.lots_checked += 1
        ledger_quantity = ledger.get(lot.id, 0)
        expected_state = StockLot.state_for(lot.current_quantity)
        if lot.current_quantity != ledger_quantity or lot.state != expected_state:
            report.mismatches.append(LotMismatch(
                lot_id=lot.id,
                current_quantity=lot.current_quantity,
                ledger_quantity=ledger_quantity,
                state=lot.state,
                expected_state=expected_state,
            ))

    if report.mismatches:
        metrics.stock_ledger_mismatches_total.inc(len(report.mismatches))

    log_consistency_checkpoint(
        'lot_balances_match_kardex',
        entity_ids={'lots_checked': str(report.lots_checked)},
        checks_passed={
            'balances_match': not any(m.current_quantity != m.ledger_quantity for m in report.mismatches),
            'states_match': not any(m.state != m.expected_state for m in report.mismatches),
        },
        mismatched_lot_ids=[m.lot_id for m in report.mismatches],
    )
    return report
