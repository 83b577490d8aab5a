"""
Metrics instrumentation.

Prometheus counters and histograms for the inventory ledger.
"""
from prometheus_client import Counter, Histogram


class MetricsRegistry:
    """
    Central metrics registry.

    Provides typed access to all application metrics.
    """

    def __init__(self):
        """Initialize metrics registry."""
        self._setup_metrics()

    def _create_counter(self, name, description, labels=None):
        """Create a counter metric."""
        return Counter(name, description, labels or [])

    def _create_histogram(self, name, description, labels=None, buckets=None):
        """Create a histogram metric."""
        if buckets:
            return Histogram(name, description, labels or [], buckets=buckets)
        return Histogram(name, description, labels or [])

    def _setup_metrics(self):
        """Setup all application metrics."""

        # ===================================================================
        # Posting Metrics
        # ===================================================================
        self.stock_documents_posted_total = self._create_counter(
            'stock_documents_posted_total',
            'Ledger documents posted',
            ['document_type']  # receipt, issue, adjustment, transfer
        )

        self.stock_documents_voided_total = self._create_counter(
            'stock_documents_voided_total',
            'Ledger documents voided',
            ['document_type']
        )

        self.stock_operation_failures_total = self._create_counter(
            'stock_operation_failures_total',
            'Ledger operations aborted and rolled back',
            ['operation', 'error_type']
        )

        self.stock_operation_duration_seconds = self._create_histogram(
            'stock_operation_duration_seconds',
            'Duration of ledger operations',
            ['operation'],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
        )

        # ===================================================================
        # Stock Metrics
        # ===================================================================
        self.stock_movements_total = self._create_counter(
            'stock_movements_total',
            'Kardex entries appended',
            ['movement_type']
        )

        self.stock_insufficient_stock_total = self._create_counter(
            'stock_insufficient_stock_total',
            'Issue lines rejected because no single lot could cover them'
        )

        self.stock_idempotent_replays_total = self._create_counter(
            'stock_idempotent_replays_total',
            'Mutating requests answered from an existing document',
            ['document_type']
        )

        self.stock_document_number_conflicts_total = self._create_counter(
            'stock_document_number_conflicts_total',
            'Document number collisions resolved by retry',
            ['series']
        )

        self.stock_ledger_mismatches_total = self._create_counter(
            'stock_ledger_mismatches_total',
            'Lots whose balance disagrees with the kardex'
        )


# Global metrics instance
metrics = MetricsRegistry()
