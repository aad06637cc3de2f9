import pytest

from app.monitoring.prometheus_metrics import (
    REGISTRY,
    _resource_kind,
    prometheus_metrics,
)


def _sample(name: str, labels: dict) -> float:
    value = REGISTRY.get_sample_value(name, labels)
    return value or 0.0


@pytest.mark.unit
class TestBookingEngineMetrics:
    def test_lock_keys_collapse_to_resource_kind(self):
        assert _resource_kind("package:01ABC:mutex") == "package"
        assert _resource_kind("plain") == "plain"

    def test_ledger_counts_credits_only_on_success(self):
        labels = {"direction": "debit"}
        before = _sample("booking_engine_ledger_credits_total", labels)

        prometheus_metrics.record_ledger("debit", "success", 3)
        prometheus_metrics.record_ledger("debit", "insufficient", 5)

        assert _sample("booking_engine_ledger_credits_total", labels) == before + 3

    def test_service_errors_are_labelled(self):
        labels = {"service": "BookingService", "operation": "probe", "error_type": "SessionFullException"}
        before = _sample("booking_engine_errors_total", labels)

        prometheus_metrics.record_service_operation(
            "BookingService", "probe", 0.01, status="error", error_type="SessionFullException"
        )

        assert _sample("booking_engine_errors_total", labels) == before + 1

    def test_exposition_format(self):
        prometheus_metrics.record_waitlist("joined")
        body = prometheus_metrics.get_metrics().decode()
        assert "booking_engine_waitlist_events_total" in body
        assert prometheus_metrics.get_content_type().startswith("text/plain")
