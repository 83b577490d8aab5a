"""
Tracing support (OpenTelemetry API).

Without a configured SDK the API hands out non-recording spans, so the
helpers are safe to call unconditionally.
"""
import logging
import time
from contextlib import contextmanager
from typing import Optional, Dict, Any

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

logger = logging.getLogger(__name__)

tracer = trace.get_tracer(__name__)

_SPAN_KINDS = {
    'server': SpanKind.SERVER,
    'client': SpanKind.CLIENT,
    'internal': SpanKind.INTERNAL,
}


@contextmanager
def trace_span(
    name: str,
    kind: Optional[str] = None,
    attributes: Optional[Dict[str, Any]] = None
):
    """
    Context manager for creating trace spans.

    Args:
        name: Span name
        kind: Span kind (server, client, internal)
        attributes: Span attributes

    Usage:
        with trace_span('stock.issue', attributes={'kind': 'sale'}):
            # ... operation ...
    """
    start_time = time.time()
    span_kind = _SPAN_KINDS.get(kind, SpanKind.INTERNAL)

    with tracer.start_as_current_span(name, kind=span_kind) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)

        try:
            yield span
        except Exception as e:
            span.set_attribute('error', True)
            span.set_attribute('error.type', e.__class__.__name__)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
        finally:
            logger.debug(
                f'Span finished: {name}',
                extra={
                    'event': 'span_finished',
                    'span_name': name,
                    'duration_ms': round((time.time() - start_time) * 1000, 2),
                }
            )


def add_span_attribute(key: str, value: Any):
    """
    Add attribute to current span if it is recording.
    """
    span = trace.get_current_span()
    if span and span.is_recording():
        span.set_attribute(key, value)
