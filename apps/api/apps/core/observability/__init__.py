"""
Observability module for the inventory ledger.

Provides structured logging, metrics, tracing, and operation correlation.
"""
from .metrics import metrics
from .events import log_domain_event
from .logging import get_sanitized_logger
from .correlation import operation_context

__all__ = ['metrics', 'log_domain_event', 'get_sanitized_logger', 'operation_context']
