"""
Prometheus metrics module for BookingFlow.

Service timings come from the @measure_operation decorator; domain counters
track the booking lifecycle, availability degradation and calendar sync.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "bookingflow_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

service_operations_total = Counter(
    "bookingflow_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "bookingflow_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

availability_queries_total = Counter(
    "bookingflow_availability_queries_total",
    "Availability queries by data source (provider or fallback)",
    ["source"],
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "bookingflow_booking_transitions_total",
    "Booking status transitions",
    ["to_status"],
    registry=REGISTRY,
)

webhook_outcomes_total = Counter(
    "bookingflow_webhook_outcomes_total",
    "Processed payment notifications by outcome",
    ["outcome"],
    registry=REGISTRY,
)

calendar_sync_total = Counter(
    "bookingflow_calendar_sync_total",
    "Calendar event creation attempts by result",
    ["result"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

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

    # Domain helpers
    @staticmethod
    def inc_availability_source(source: str) -> None:
        availability_queries_total.labels(source=source).inc()

    @staticmethod
    def inc_booking_transition(to_status: str) -> None:
        booking_transitions_total.labels(to_status=to_status).inc()

    @staticmethod
    def inc_webhook_outcome(outcome: str) -> None:
        webhook_outcomes_total.labels(outcome=outcome).inc()

    @staticmethod
    def inc_calendar_sync(result: str) -> None:
        calendar_sync_total.labels(result=result).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """
        Generate Prometheus metrics in exposition format.

        Returns:
            Metrics data in Prometheus text format
        """
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)


# Global instance
prometheus_metrics = PrometheusMetrics()
