"""
Prometheus metrics for reconciliation monitoring.

Tracks:
- Inbound gateway payloads by channel and disposition
- Security rejections
- Ledger finalize attempts (applied vs. already final)
- Payment initiations and outbound gateway calls
- Order side-effect failures
- Notification delivery
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Inbound metrics
inbound_events_total = Counter(
    "reconciliation_inbound_events_total",
    "Total inbound gateway payloads",
    ["channel", "disposition"],  # disposition: applied, duplicate, pending, rejected
)

inbound_processing_duration_seconds = Histogram(
    "reconciliation_inbound_duration_seconds",
    "Inbound payload reconciliation duration in seconds",
    ["channel"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

security_rejections_total = Counter(
    "reconciliation_security_rejections_total",
    "Total inbound payloads rejected for authenticity",
    ["reason"],  # signature_mismatch, foreign_merchant
)

outcome_cache_hits_total = Counter(
    "reconciliation_outcome_cache_hits_total",
    "Total outcome cache lookups",
    ["result"],  # hit, miss
)

# Ledger metrics
finalize_attempts_total = Counter(
    "ledger_finalize_attempts_total",
    "Total finalize attempts",
    ["status", "applied"],
)

# Initiation metrics
payment_initiations_total = Counter(
    "payment_initiations_total",
    "Total payment initiations",
    ["status"],  # created, rejected, gateway_error
)

payment_amount_minor = Histogram(
    "payment_amount_minor",
    "Initiated payment amounts in minor units",
    buckets=(100, 1000, 5000, 10000, 50000, 100000, 500000, 1000000),
)

gateway_api_requests_total = Counter(
    "gateway_api_requests_total",
    "Total outbound gateway API requests",
    ["operation", "status"],
)

gateway_api_duration_seconds = Histogram(
    "gateway_api_duration_seconds",
    "Outbound gateway API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Order synchronization metrics
order_synchronizations_total = Counter(
    "order_synchronizations_total",
    "Total order synchronization attempts",
    ["outcome"],  # applied, skipped
)

side_effect_failures_total = Counter(
    "order_side_effect_failures_total",
    "Total inventory and cart side-effect failures",
    ["effect"],  # inventory_decrement, inventory_restock, cart_clear
)

notifications_total = Counter(
    "payment_notifications_total",
    "Total payment notifications",
    ["status"],  # queued, dropped, delivered, failed
)

# Sweeper metrics
sweeper_last_run_timestamp = Gauge(
    "reconciliation_sweeper_last_run_timestamp",
    "Timestamp of last sweeper run",
)

sweeper_records_total = Counter(
    "reconciliation_sweeper_records_total",
    "Total records handled by the sweeper",
    ["task", "result"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_inbound(channel: str, disposition: str, duration_seconds: float) -> None:
        """Record one reconciled inbound payload."""
        inbound_events_total.labels(channel=channel, disposition=disposition).inc()
        inbound_processing_duration_seconds.labels(channel=channel).observe(duration_seconds)

    @staticmethod
    def record_security_rejection(reason: str) -> None:
        security_rejections_total.labels(reason=reason).inc()

    @staticmethod
    def record_outcome_cache(hit: bool) -> None:
        outcome_cache_hits_total.labels(result="hit" if hit else "miss").inc()

    @staticmethod
    def record_finalize(status: str, applied: bool) -> None:
        """Record a ledger finalize attempt."""
        finalize_attempts_total.labels(status=status, applied=str(applied).lower()).inc()

    @staticmethod
    def record_initiation(status: str, amount_minor: int = 0) -> None:
        """Record a payment initiation."""
        payment_initiations_total.labels(status=status).inc()
        if amount_minor > 0:
            payment_amount_minor.observe(amount_minor)

    @staticmethod
    def record_gateway_api_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record outbound gateway API call."""
        gateway_api_requests_total.labels(operation=operation, status=status).inc()
        gateway_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_synchronization(outcome: str) -> None:
        order_synchronizations_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_side_effect_failure(effect: str) -> None:
        side_effect_failures_total.labels(effect=effect).inc()

    @staticmethod
    def record_notification(status: str) -> None:
        notifications_total.labels(status=status).inc()

    @staticmethod
    def record_sweep(task: str, result: str, count: int = 1) -> None:
        """Record records handled by a sweeper task."""
        if count > 0:
            sweeper_records_total.labels(task=task, result=result).inc(count)

    @staticmethod
    def record_sweep_run() -> None:
        sweeper_last_run_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
