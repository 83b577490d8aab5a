"""
Ledger error taxonomy.

Every failure raised by the stock services is a StockError. The validation
and business-rule errors also derive from Django's ValidationError so callers
that already catch that (forms, admin, request handlers) keep working.
"""
from django.core.exceptions import ObjectDoesNotExist
from django.core.exceptions import ValidationError as DjangoValidationError


class StockError(Exception):
    """Base class for every ledger failure."""
    error_type = 'stock_error'


class ValidationError(StockError, DjangoValidationError):
    """Request is malformed: missing fields, non-positive quantities, missing lot data."""
    error_type = 'validation_error'

    def __init__(self, message, code=None, params=None):
        DjangoValidationError.__init__(self, message, code=code, params=params)

    def __str__(self):
        return DjangoValidationError.__str__(self)


class InsufficientStockError(ValidationError):
    """No single lot can cover the requested quantity."""
    error_type = 'insufficient_stock'

    def __init__(self, message, product_id=None, requested=None, best_available=None, batch_code=None):
        super().__init__(message, code='insufficient_stock')
        self.product_id = product_id
        self.requested = requested
        self.best_available = best_available
        self.batch_code = batch_code


class BusinessRuleError(StockError, DjangoValidationError):
    """Request is well formed but violates a ledger rule (void preconditions, negative stock, ...)."""
    error_type = 'business_rule'

    def __init__(self, message, code=None, params=None):
        DjangoValidationError.__init__(self, message, code=code, params=params)

    def __str__(self):
        return DjangoValidationError.__str__(self)


class NotFoundError(StockError, ObjectDoesNotExist):
    """Referenced product, lot, partner or document does not exist."""
    error_type = 'not_found'


class ConflictError(StockError):
    """Concurrent writer won: duplicate idempotency key or document number."""
    error_type = 'conflict'


class InfrastructureError(StockError):
    """Storage failure; the operation was rolled back."""
    error_type = 'infrastructure'
