"""
Prometheus metrics for the booking engine.

Service operation timings come from the @measure_operation decorator on
BaseService; ledger, lock and waitlist counters are recorded by the
services that own those concerns. Metrics live in a dedicated registry so
the request layer can expose them without clashing with default collectors.
"""

from threading import Lock
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "booking_engine_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "booking_engine_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "booking_engine_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

lock_operations_total = Counter(
    "booking_engine_lock_operations_total",
    "Keyed lock acquisitions and releases by outcome",
    ["resource", "action", "outcome"],  # outcome: success | timeout | redis_unavailable | error
    registry=REGISTRY,
)

lock_wait_seconds = Histogram(
    "booking_engine_lock_wait_seconds",
    "Time spent waiting to acquire a keyed lock",
    ["resource"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0),
)

ledger_movements_total = Counter(
    "booking_engine_ledger_movements_total",
    "Credit ledger debits and refunds",
    ["direction", "outcome"],  # direction: debit | refund
    registry=REGISTRY,
)

ledger_credits_total = Counter(
    "booking_engine_ledger_credits_total",
    "Credit units moved through the ledger",
    ["direction"],
    registry=REGISTRY,
)

waitlist_events_total = Counter(
    "booking_engine_waitlist_events_total",
    "Waitlist joins, notifications and promotions",
    ["event"],
    registry=REGISTRY,
)


def _resource_kind(key: str) -> str:
    """Collapse a lock key like ``package:01H..:mutex`` to its kind label."""
    return key.split(":", 1)[0] if ":" in key else key


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'BookingService')
            operation: Operation/method name (e.g., 'create_booking')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_lock(key: str, action: str, outcome: str, waited: Optional[float] = None) -> None:
        resource = _resource_kind(key)
        lock_operations_total.labels(resource=resource, action=action, outcome=outcome).inc()
        if waited is not None:
            lock_wait_seconds.labels(resource=resource).observe(waited)

    @staticmethod
    def record_ledger(direction: str, outcome: str, amount: int = 0) -> None:
        ledger_movements_total.labels(direction=direction, outcome=outcome).inc()
        if outcome == "success" and amount > 0:
            ledger_credits_total.labels(direction=direction).inc(amount)

    @staticmethod
    def record_waitlist(event: str) -> None:
        waitlist_events_total.labels(event=event).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Render the registry in Prometheus text exposition format."""
        with PrometheusMetrics._cache_lock:
            return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
