"""
Stock services - inventory ledger and lot engine.

Mutating operations (one transaction each, all-or-nothing):
    receive, void_receipt, issue, void_issue, mark_issue_billed, adjust, transfer

Read-only queries:
    available_stock, low_stock, expiring_soon, expired_lots, kardex,
    lot_detail, list_lots, inventory_summary, pending_billing, bag_contents,
    get_receipt, list_receipts, receipt_statistics,
    get_issue, list_issues, issue_statistics, reconcile_lots
"""
from .adjustments import adjust
from .documents import next_number
from .issuance import issue, mark_issue_billed, void_issue
from .queries import (
    available_stock,
    bag_contents,
    expired_lots,
    expiring_soon,
    get_issue,
    get_receipt,
    inventory_summary,
    issue_statistics,
    kardex,
    list_issues,
    list_lots,
    list_receipts,
    lot_detail,
    low_stock,
    pending_billing,
    receipt_statistics,
    reconcile_lots,
)
from .receiving import receive, void_receipt
from .transfers import transfer

__all__ = [
    'receive',
    'void_receipt',
    'issue',
    'void_issue',
    'mark_issue_billed',
    'adjust',
    'transfer',
    'next_number',
    'available_stock',
    'low_stock',
    'expiring_soon',
    'expired_lots',
    'kardex',
    'lot_detail',
    'list_lots',
    'inventory_summary',
    'pending_billing',
    'bag_contents',
    'get_receipt',
    'list_receipts',
    'receipt_statistics',
    'get_issue',
    'list_issues',
    'issue_statistics',
    'reconcile_lots',
]
