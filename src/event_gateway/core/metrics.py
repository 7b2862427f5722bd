"""
Prometheus metrics for the gateway.

Collectors are registered on the global REGISTRY at import time and exposed
through GET /metrics.
"""
from prometheus_client import Counter, Gauge, Histogram

INGRESS_REQUESTS_TOTAL = Counter(
    "gateway_ingress_requests_total",
    "Inbound publish requests by HTTP status",
    ["status"],
)

PUBLISH_RESULTS_TOTAL = Counter(
    "gateway_publish_results_total",
    "Broker publish results",
    ["result"],
)

PENDING_EVENTS = Gauge(
    "gateway_pending_events",
    "Accepted events waiting for dispatch",
)

DELIVERY_ATTEMPTS_TOTAL = Counter(
    "gateway_delivery_attempts_total",
    "Sink enqueue attempts",
    ["sink"],
)

DELIVERY_OUTCOMES_TOTAL = Counter(
    "gateway_delivery_outcomes_total",
    "Terminal delivery outcomes per sink",
    ["sink", "outcome"],
)

DELIVERY_LATENCY_SECONDS = Histogram(
    "gateway_delivery_latency_seconds",
    "Time from first attempt to terminal outcome",
    ["sink"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60],
)

DEAD_LETTER_TOTAL = Counter(
    "gateway_dead_letter_total",
    "Events routed to the dead-letter sink",
    ["result"],
)
