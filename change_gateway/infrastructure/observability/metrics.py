"""Prometheus metrics for change request flow, gateway health, and workers"""

from typing import Optional
from prometheus_client import Counter, Histogram

# Lifecycle metrics
transition_counter = Counter(
    "change_request_transitions_total",
    "Committed change request status transitions",
    ["from_status", "to_status"],
)

opened_counter = Counter(
    "change_request_opened_total",
    "Change requests opened",
    ["kind"],  # address | package | both
)

expired_counter = Counter(
    "change_request_expired_total",
    "Invoices expired by the sweeper",
)

# Gateway metrics
gateway_failure_counter = Counter(
    "gateway_failures_total",
    "Failed calls to external collaborators",
    ["gateway", "operation"],
)

gateway_latency_histogram = Histogram(
    "gateway_latency_seconds",
    "External collaborator response time",
    ["gateway"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Poller metrics
payment_poll_counter = Counter(
    "payment_poll_total",
    "Payment status probes",
    ["outcome"],  # settled | unsettled | error
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_transition(from_status: Optional[str], to_status: str) -> None:
    """Count a committed transition; opens are counted with from_status 'none'"""
    transition_counter.labels(from_status=from_status or "none", to_status=to_status).inc()
