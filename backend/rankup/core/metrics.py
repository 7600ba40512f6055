"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Booking lifecycle metrics
booking_transitions = Counter(
    "booking_transitions_total",
    "Booking status transitions",
    ["transition", "result"],  # accept/reject/cancel/complete, success/stale/invalid
)

bookings_created = Counter(
    "bookings_created_total",
    "Bookings created after payment capture",
    ["session_type"],
)

refund_eligible_cancellations = Counter(
    "booking_cancellations_total",
    "Cancellations by refund eligibility",
    ["refund_eligible"],
)

# Payment metrics
payment_intents = Counter(
    "payment_intents_total",
    "Payment intents created",
    ["split"],  # marketplace, platform_held
)

payment_outcomes = Counter(
    "payment_outcomes_total",
    "Payment confirmation outcomes",
    ["flow", "outcome"],  # delegated/programmatic, succeeded/declined/failed/unavailable
)

gateway_latency = Histogram(
    "payment_gateway_latency_seconds",
    "Payment gateway call latency",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

reconciliation_failures = Counter(
    "payment_reconciliation_failures_total",
    "Captured payments whose booking could not be recorded",
)

# Messaging and reviews
conversations_created = Counter(
    "conversations_created_total",
    "Conversations created for bookings",
)

messages_sent = Counter(
    "messages_sent_total",
    "Chat messages sent",
)

reviews_created = Counter(
    "reviews_created_total",
    "Reviews submitted",
    ["rating"],
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_transition(transition: str, result: str):
    """Record a lifecycle transition. Result: success, stale, invalid"""
    booking_transitions.labels(transition=transition, result=result).inc()


def record_payment_outcome(flow: str, outcome: str):
    """Record a payment confirmation outcome."""
    payment_outcomes.labels(flow=flow, outcome=outcome).inc()
