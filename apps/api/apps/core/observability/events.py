"""
Domain events logging helpers.

Provides structured event logging for ledger operations.
"""
from typing import Dict, Optional
from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'receipt_posted', 'issue_voided')
        entity_type: Type of entity (e.g., 'ReceiptDocument', 'StockLot')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, blocked, duplicate...)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'issue_posted',
            entity_type='IssueDocument',
            entity_id=str(issue.id),
            result='success',
            lines_count=3,
            total_quantity=42
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    event_data.update(sanitize_dict(extra_fields))

    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'blocked', 'duplicate']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_consistency_checkpoint(
    checkpoint_name: str,
    entity_ids: Dict[str, str],
    checks_passed: Dict[str, bool],
    **extra_fields
):
    """
    Log a consistency checkpoint event.

    Used to verify ledger integrity at critical points.

    Example:
        log_consistency_checkpoint(
            'transfer_conserves_quantity',
            entity_ids={'transfer_id': str(transfer.id)},
            checks_passed={'sum_preserved': True, 'two_entries': True},
        )
    """
    all_passed = all(checks_passed.values())

    event_data = {
        'event': 'consistency_checkpoint',
        'checkpoint': checkpoint_name,
        'status': 'passed' if all_passed else 'failed',
        'checks': checks_passed,
    }
    event_data.update(entity_ids)
    event_data.update(sanitize_dict(extra_fields))

    if all_passed:
        logger.info(f'Checkpoint passed: {checkpoint_name}', extra=event_data)
    else:
        logger.error(f'Checkpoint FAILED: {checkpoint_name}', extra=event_data)


def log_document_posted(document_type, document, lines_count, total_quantity, **extra):
    """Log a posted receipt/issue/adjustment/transfer document."""
    log_domain_event(
        f'{str(document_type)}_posted',
        entity_type=document.__class__.__name__,
        entity_id=str(document.id),
        entity_ids={'document_number': document.number},
        result='success',
        lines_count=lines_count,
        total_quantity=total_quantity,
        **extra
    )


def log_document_voided(document_type, document, lines_count, **extra):
    """Log a voided receipt/issue."""
    log_domain_event(
        f'{str(document_type)}_voided',
        entity_type=document.__class__.__name__,
        entity_id=str(document.id),
        entity_ids={'document_number': document.number},
        result='success',
        lines_count=lines_count,
        **extra
    )


def log_void_blocked(document_type, document, reason, **extra):
    """Log a void attempt rejected by a precondition."""
    log_domain_event(
        f'{str(document_type)}_void_blocked',
        entity_type=document.__class__.__name__,
        entity_id=str(document.id),
        entity_ids={'document_number': document.number},
        result='blocked',
        reason=reason,
        **extra
    )


def log_insufficient_stock(product_id, requested_qty, best_available, batch_code=None):
    """Log an issue line that no single lot could cover."""
    log_domain_event(
        'stock_insufficient',
        entity_type='Product',
        entity_id=str(product_id),
        result='blocked',
        requested_qty=requested_qty,
        best_available=best_available,
        batch_code=batch_code or '',
    )


def log_idempotent_replay(document_type, document, idempotency_key):
    """Log a repeated request answered from the existing document."""
    log_domain_event(
        f'{str(document_type)}_idempotent_replay',
        entity_type=document.__class__.__name__,
        entity_id=str(document.id),
        entity_ids={'document_number': document.number},
        result='duplicate',
        idempotency_key=idempotency_key,
    )


def log_idempotency_conflict(document_type, document, idempotency_key, mismatched_fields):
    """Log a key reused for a request that differs from the original one."""
    log_domain_event(
        f'{str(document_type)}_idempotency_conflict',
        entity_type=document.__class__.__name__,
        entity_id=str(document.id),
        entity_ids={'document_number': document.number},
        result='blocked',
        idempotency_key=idempotency_key,
        mismatched_fields=mismatched_fields,
    )
