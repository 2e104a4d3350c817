"""
Prometheus metrics for the ticketing access control system.
Tracks reconciliation outcomes and backend call health.
"""

from prometheus_client import Counter, Histogram, start_http_server
import logging

logger = logging.getLogger(__name__)

# Business Metrics
RECONCILIATION_RUNS_TOTAL = Counter(
    'access_reconciliation_runs_total',
    'Total number of access control reconciliations',
    ['status']
)

DEFICIENT_TRANSACTIONS_TOTAL = Counter(
    'deficient_transactions_total',
    'Paid transactions found with fewer QR codes than tickets purchased',
    ['channel']
)

MISSING_QR_CODES_TOTAL = Counter(
    'missing_qr_codes_total',
    'QR codes expected but not issued',
    ['channel']
)

DEGRADED_FETCHES_TOTAL = Counter(
    'degraded_fetches_total',
    'Sub-fetches that failed and were treated as empty',
    ['source']
)

SCAN_TOGGLES_TOTAL = Counter(
    'qr_scan_toggles_total',
    'QR scan status changes',
    ['status']
)

# Technical Metrics
RECONCILIATION_DURATION_SECONDS = Histogram(
    'access_reconciliation_duration_seconds',
    'Time spent on one access control reconciliation',
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60]
)

BACKEND_REQUESTS_TOTAL = Counter(
    'backend_requests_total',
    'Total backend requests made',
    ['endpoint', 'status']
)

BACKEND_REQUEST_DURATION_SECONDS = Histogram(
    'backend_request_duration_seconds',
    'Backend request duration',
    ['endpoint'],
    buckets=[0.05, 0.1, 0.5, 1, 2, 5, 10, 30]
)


class MetricsCollector:
    """Centralized metrics collection for the access control system."""

    def __init__(self, port: int = 8000):
        self.port = port
        self.server_started = False

    def start_metrics_server(self):
        """Start Prometheus metrics server."""
        if not self.server_started:
            try:
                if not (1024 <= self.port <= 65535):
                    raise ValueError(f"Invalid port {self.port}. Must be between 1024-65535")

                start_http_server(self.port)
                self.server_started = True
                logger.info(f"Metrics server started on port {self.port}")
            except Exception as e:
                logger.error(f"Failed to start metrics server: {e}")

    def record_reconciliation_run(self, status: str, duration: float):
        """Record reconciliation run metrics."""
        RECONCILIATION_RUNS_TOTAL.labels(status=status).inc()
        RECONCILIATION_DURATION_SECONDS.observe(duration)

    def record_deficiencies(self, channel: str, transactions: int, missing_codes: int):
        """Record deficient transactions and missing codes for one channel."""
        if transactions:
            DEFICIENT_TRANSACTIONS_TOTAL.labels(channel=channel).inc(transactions)
        if missing_codes:
            MISSING_QR_CODES_TOTAL.labels(channel=channel).inc(missing_codes)

    def record_degraded_fetch(self, source: str):
        DEGRADED_FETCHES_TOTAL.labels(source=source).inc()

    def record_scan_toggle(self, status: str):
        SCAN_TOGGLES_TOTAL.labels(status=status).inc()

    def record_backend_request(self, endpoint: str, status: str, duration: float):
        """Record backend request metrics."""
        BACKEND_REQUESTS_TOTAL.labels(endpoint=endpoint, status=status).inc()
        BACKEND_REQUEST_DURATION_SECONDS.labels(endpoint=endpoint).observe(duration)


# Global metrics collector instance
metrics = MetricsCollector()
