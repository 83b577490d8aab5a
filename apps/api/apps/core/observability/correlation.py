"""
Operation correlation context.

Every posting operation runs inside ``operation_context`` so that log lines
emitted anywhere below it carry the same operation id, actor and operation
name. Callers (request handlers, jobs) may pass their own request id to join
the ledger logs with their own.
"""
import uuid
from contextlib import contextmanager
from threading import local

# Thread-local storage for operation context
_operation_context = local()


def get_operation_id():
    """Get current operation ID from thread-local storage."""
    return getattr(_operation_context, 'operation_id', None)


def get_operation_name():
    """Get current operation name from thread-local storage."""
    return getattr(_operation_context, 'operation', None)


def get_actor_id():
    """Get current actor ID from thread-local storage."""
    return getattr(_operation_context, 'actor_id', None)


@contextmanager
def operation_context(operation, actor_id=None, operation_id=None):
    """
    Bind correlation fields for the duration of one ledger operation.

    Nested contexts keep the outer operation id so a void triggered from
    another operation is still traceable to its origin.

    Usage:
        with operation_context('receive', actor_id=user.id):
            ...
    """
    previous = {
        attr: getattr(_operation_context, attr, None)
        for attr in ('operation_id', 'operation', 'actor_id')
    }

    _operation_context.operation_id = (
        operation_id or previous['operation_id'] or str(uuid.uuid4())
    )
    _operation_context.operation = operation
    _operation_context.actor_id = str(actor_id) if actor_id is not None else previous['actor_id']

    try:
        yield _operation_context.operation_id
    finally:
        for attr, value in previous.items():
            setattr(_operation_context, attr, value)


def clear_operation_context():
    """Clear thread-local operation context (useful for testing)."""
    for attr in ['operation_id', 'operation', 'actor_id']:
        if hasattr(_operation_context, attr):
            delattr(_operation_context, attr)
