"""
Typed requests and results for the stock services.

Request handlers build these after parsing their own input; services never
see raw request payloads.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional, Union


# ============================================================================
# Requests
# ============================================================================

@dataclass
class ReceiptLineRequest:
    product_id: int
    quantity: int
    unit_price: Decimal = Decimal('0')
    batch_code: Optional[str] = None
    # date or ISO 'YYYY-MM-DD' string
    expiration_date: Optional[Union[date, str]] = None


@dataclass
class ReceiveRequest:
    supplier_id: int
    lines: List[ReceiptLineRequest]
    document_date: Optional[date] = None
    supplier_document_type: str = 'invoice'
    supplier_document_number: str = ''
    notes: str = ''
    idempotency_key: Optional[str] = None


@dataclass
class IssueLineRequest:
    product_id: int
    quantity: int
    requested_batch_code: Optional[str] = None
    unit_price: Optional[Decimal] = None


@dataclass
class IssueRequest:
    kind: str
    lines: List[IssueLineRequest]
    client_id: Optional[int] = None
    bag_id: Optional[int] = None
    document_date: Optional[date] = None
    notes: str = ''
    idempotency_key: Optional[str] = None


@dataclass
class AdjustmentRequest:
    lot_id: int
    new_quantity: int
    reason: str
    notes: str = ''
    idempotency_key: Optional[str] = None


@dataclass
class TransferRequest:
    source_lot_id: int
    destination_lot_id: int
    quantity: int
    notes: str = ''
    idempotency_key: Optional[str] = None


@dataclass
class LowStockPolicy:
    """
    Which products the low-stock report considers.

    A product is low when its available stock is at or below its min_stock.
    Products with min_stock = 0 have no threshold and are skipped unless
    include_unset_minimum is True.
    """
    active_only: bool = True
    include_unset_minimum: bool = False


@dataclass
class KardexFilter:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    movement_type: Optional[str] = None
    lot_id: Optional[int] = None


@dataclass
class ReceiptFilter:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    supplier_id: Optional[int] = None
    status: Optional[str] = None
    # matches document number or supplier document number
    search: str = ''


@dataclass
class IssueFilter:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    kind: Optional[str] = None
    client_id: Optional[int] = None
    bag_id: Optional[int] = None
    status: Optional[str] = None
    billed: Optional[bool] = None
    search: str = ''


@dataclass
class LotFilter:
    """
    Lot listing criteria.

    ``state`` defaults to available lots; pass None for every state.
    ``search`` matches product code, product name or batch code.
    """
    product_id: Optional[int] = None
    supplier_id: Optional[int] = None
    state: Optional[str] = 'available'
    expiring_within_days: Optional[int] = None
    search: str = ''


# ============================================================================
# Results
# ============================================================================

@dataclass
class ReceiptResult:
    document_id: int
    number: str
    total: Decimal
    lot_ids: List[int] = field(default_factory=list)
    replayed: bool = False


@dataclass
class LotAllocation:
    line_number: int
    product_id: int
    lot_id: int
    batch_code: Optional[str]
    expiration_date: Optional[date]
    quantity: int


@dataclass
class IssueResult:
    document_id: int
    number: str
    allocations: List[LotAllocation] = field(default_factory=list)
    replayed: bool = False


@dataclass
class VoidResult:
    document_id: int
    number: str
    status: str
    lines_reversed: int


@dataclass
class BillingResult:
    document_id: int
    number: str
    invoice_number: str


@dataclass
class AdjustmentResult:
    document_id: int
    number: str
    lot_id: int
    previous_quantity: int
    new_quantity: int
    quantity_delta: int
    replayed: bool = False


@dataclass
class TransferResult:
    document_id: int
    number: str
    source_lot_id: int
    destination_lot_id: int
    quantity: int
    source_before: int
    source_after: int
    destination_before: int
    destination_after: int
    replayed: bool = False


@dataclass
class LotMismatch:
    lot_id: int
    current_quantity: int
    ledger_quantity: int
    state: str
    expected_state: str


@dataclass
class ReconciliationReport:
    lots_checked: int
    mismatches: List[LotMismatch] = field(default_factory=list)

    @property
    def consistent(self):
        return not self.mismatches
