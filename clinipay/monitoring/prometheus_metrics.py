"""
Prometheus metrics for clinipay.

Service timings are recorded by ``BaseService.measure_operation``. The money
flow gets its own counters: payment status transitions (by source), payout
attempts and webhook outcomes. Everything lives in a private registry that
``GET /metrics`` exposes.
"""

from typing import Optional, cast

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "clinipay_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    # Stripe round trips dominate; anything past 5s is a timeout in practice
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

service_operations_total = Counter(
    "clinipay_service_operations_total",
    "Service operations by outcome (success, rejected, error)",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

service_errors_total = Counter(
    "clinipay_service_errors_total",
    "Unexpected service failures by exception type",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

payment_transitions_total = Counter(
    "clinipay_payment_transitions_total",
    "Payment status transitions performed",
    ["to_status", "source"],  # source: client | webhook | cancellation | reconcile
    registry=REGISTRY,
)

payouts_total = Counter(
    "clinipay_payouts_total",
    "Payout attempts by outcome",
    ["status"],  # processed | skipped | failed
    registry=REGISTRY,
)

webhook_events_total = Counter(
    "clinipay_webhook_events_total",
    "Verified webhook events by type and outcome",
    ["event_type", "outcome"],  # handled | ignored | duplicate | failed
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin recording facade so services never touch metric objects directly."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            service_errors_total.labels(
                service=service, operation=operation, error_type=error_type
            ).inc()

    @staticmethod
    def inc_payment_transition(to_status: str, source: str) -> None:
        payment_transitions_total.labels(to_status=to_status, source=source).inc()

    @staticmethod
    def inc_payout(status: str) -> None:
        payouts_total.labels(status=status).inc()

    @staticmethod
    def inc_webhook_event(event_type: str, outcome: str) -> None:
        webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def get_metrics() -> bytes:
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()
