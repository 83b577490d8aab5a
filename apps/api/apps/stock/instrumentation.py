"""
Observability wrapper for ledger operations.

Each mutating service is decorated with ``instrument_operation`` outside its
``transaction.atomic`` so that by the time an error reaches the wrapper the
transaction has already rolled back. The wrapper:

- binds an operation context (operation id, actor) for log correlation
- opens a trace span
- records duration and failure metrics
- translates storage errors into the ledger error taxonomy
"""
import inspect
import time
from functools import wraps

from django.db import DatabaseError, IntegrityError

from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.correlation import operation_context
from apps.core.observability.tracing import trace_span

from .exceptions import ConflictError, InfrastructureError, StockError

logger = get_sanitized_logger(__name__)


def _actor_from_call(func, args, kwargs):
    try:
        bound = inspect.signature(func).bind_partial(*args, **kwargs)
    except TypeError:
        return None
    return bound.arguments.get('actor_id')


def _record_failure(operation, error_type, exc, duration_ms):
    metrics.stock_operation_failures_total.labels(
        operation=operation,
        error_type=error_type
    ).inc()

    event_data = {
        'event': 'stock_operation_failed',
        'error_type': error_type,
        'exception_class': exc.__class__.__name__,
        'error_message': str(exc),
        'duration_ms': round(duration_ms, 2),
    }
    # Rule violations are expected outcomes; storage failures are not
    if isinstance(exc, StockError) and not isinstance(exc, InfrastructureError):
        logger.warning(f'Stock operation rejected: {operation}', extra=event_data)
    else:
        logger.error(f'Stock operation failed: {operation}', extra=event_data, exc_info=True)


def instrument_operation(operation):
    """
    Decorator adding correlation, tracing, metrics and error translation.

    Usage:
        @instrument_operation('receive')
        @transaction.atomic
        def receive(request, actor_id):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            actor_id = _actor_from_call(func, args, kwargs)
            start_time = time.time()

            with operation_context(operation, actor_id=actor_id) as operation_id:
                with trace_span(
                    f'stock.{operation}',
                    kind='internal',
                    attributes={
                        'stock.operation': operation,
                        'stock.operation_id': operation_id,
                        'stock.actor_id': str(actor_id) if actor_id is not None else None,
                    }
                ):
                    try:
                        return func(*args, **kwargs)
                    except StockError as e:
                        _record_failure(operation, e.error_type, e, (time.time() - start_time) * 1000)
                        raise
                    except IntegrityError as e:
                        _record_failure(operation, ConflictError.error_type, e, (time.time() - start_time) * 1000)
                        raise ConflictError(
                            f'{operation} conflicted with a concurrent write and was rolled back.'
                        ) from e
                    except DatabaseError as e:
                        _record_failure(operation, InfrastructureError.error_type, e, (time.time() - start_time) * 1000)
                        raise InfrastructureError(
                            f'{operation} failed in storage and was rolled back.'
                        ) from e
                    finally:
                        metrics.stock_operation_duration_seconds.labels(
                            operation=operation
                        ).observe(time.time() - start_time)

        return wrapper
    return decorator
