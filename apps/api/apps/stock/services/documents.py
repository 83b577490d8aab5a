"""
Document numbering and shared document/reference lookups.

Numbering:
    Every series has one DocumentCounter row. ``next_number`` locks that row
    with SELECT ... FOR UPDATE and increments it inside the caller's
    transaction, so concurrent postings in one series serialize on the counter
    and the counter rolls back with a failed posting. A missing counter is
    seeded from the highest number already present in the series. The unique
    constraint on ``number`` is the backstop: on a collision the document is
    retried with the next number.
"""
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction

from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.events import log_idempotency_conflict, log_idempotent_replay
from apps.products.models import Product

from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..models import (
    AdjustmentDocument,
    DocumentCounter,
    DocumentSeriesChoices,
    IssueDocument,
    ReceiptDocument,
    SERIES_PREFIXES,
    TransferDocument,
)

logger = get_sanitized_logger(__name__)

SERIES_DOCUMENT_MODELS = {
    DocumentSeriesChoices.RECEIPT: ReceiptDocument,
    DocumentSeriesChoices.ISSUE: IssueDocument,
    DocumentSeriesChoices.TRANSFER: TransferDocument,
    DocumentSeriesChoices.ADJUSTMENT: AdjustmentDocument,
}


def format_number(series, value):
    """Render ``value`` as ``PREFIX-000042`` for the series."""
    width = settings.STOCK_DOCUMENT_NUMBER_WIDTH
    return f"{SERIES_PREFIXES[series]}-{value:0{width}d}"


def _highest_existing_number(series):
    prefix = f"{SERIES_PREFIXES[series]}-"
    numbers = SERIES_DOCUMENT_MODELS[series].objects.filter(
        number__startswith=prefix
    ).values_list('number', flat=True)

    highest = 0
    for number in numbers:
        suffix = number[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return highest


@transaction.atomic
def next_number(series):
    """
    Allocate the next document number in ``series``.

    When called inside an outer transaction the counter row stays locked
    until that transaction ends.

    Raises:
        ValidationError: unknown series
    """
    if series not in SERIES_PREFIXES:
        raise ValidationError({'series': [f"Unknown document series '{series}'."]})

    counter = DocumentCounter.objects.select_for_update().filter(series=series).first()
    if counter is None:
        counter, _ = DocumentCounter.objects.select_for_update().get_or_create(
            series=series,
            defaults={'last_value': _highest_existing_number(series)}
        )

    counter.last_value += 1
    counter.save(update_fields=['last_value', 'updated_at'])
    return format_number(series, counter.last_value)


def create_numbered_document(series, build):
    """
    Number and persist a document.

    ``build(number)`` must create and return the document. It runs in a
    savepoint; if the insert collides on ``number`` the savepoint is rolled
    back and the next number is tried.

    Raises:
        ConflictError: still colliding after STOCK_DOCUMENT_NUMBER_RETRIES retries
    """
    model = SERIES_DOCUMENT_MODELS[series]
    retries = settings.STOCK_DOCUMENT_NUMBER_RETRIES

    for attempt in range(retries + 1):
        number = next_number(series)
        try:
            with transaction.atomic():
                return build(number)
        except IntegrityError:
            if not model.objects.filter(number=number).exists():
                raise
            metrics.stock_document_number_conflicts_total.labels(series=series).inc()
            logger.warning(
                f'Document number collision: {number}',
                extra={
                    'event': 'document_number_conflict',
                    'series': series,
                    'document_number': number,
                    'attempt': attempt + 1,
                }
            )

    raise ConflictError(
        f"Could not allocate a free {series} number after {retries + 1} attempts."
    )


def find_replay(model, idempotency_key, document_type, request_fingerprint, document_fingerprint):
    """
    Return the document already posted under ``idempotency_key``, if any.

    ``request_fingerprint`` holds the identifying fields of the incoming
    request; ``document_fingerprint(document)`` must return the same keys for
    the stored document. A key reused for a different request is a conflict,
    not a replay.

    Raises:
        ConflictError: the key belongs to a document posted from another request
    """
    if not idempotency_key:
        return None

    document = model.objects.filter(idempotency_key=idempotency_key).first()
    if document is None:
        return None

    stored = document_fingerprint(document)
    mismatched = sorted(
        field for field in request_fingerprint
        if request_fingerprint[field] != stored.get(field)
    )
    if mismatched:
        log_idempotency_conflict(document_type, document, idempotency_key, mismatched)
        raise ConflictError(
            f"Idempotency key '{idempotency_key}' was already used for {document.number} "
            f"with a different request ({', '.join(mismatched)})."
        )

    metrics.stock_idempotent_replays_total.labels(document_type=document_type).inc()
    log_idempotent_replay(document_type, document, idempotency_key)
    return document


def lock_document(model, document_id):
    """Fetch a document with a row lock. NotFoundError if unknown."""
    try:
        return model.objects.select_for_update().get(pk=document_id)
    except model.DoesNotExist:
        raise NotFoundError(f"{model._meta.verbose_name} {document_id} not found.")


def resolve_actor(actor_id):
    """Check the acting user exists; returns its id."""
    if actor_id is None or not get_user_model().objects.filter(pk=actor_id).exists():
        raise NotFoundError(f"Actor {actor_id} not found.")
    return actor_id


def get_partner(model, partner_id):
    try:
        return model.objects.get(pk=partner_id)
    except model.DoesNotExist:
        raise NotFoundError(f"{model._meta.verbose_name} {partner_id} not found.")


def load_products(product_ids):
    """
    Fetch products by id.

    Raises:
        NotFoundError: listing every unknown id
    """
    ids = set(product_ids)
    products = Product.objects.in_bulk(ids)
    missing = sorted(i for i in ids if i not in products)
    if missing:
        raise NotFoundError(f"Product(s) not found: {', '.join(str(i) for i in missing)}")
    return products
