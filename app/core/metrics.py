"""
Prometheus metrics for the payment lifecycle
"""

import logging
import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, REGISTRY

logger = logging.getLogger(__name__)


def _get_or_create(metric_cls, name: str, documentation: str, labelnames):
    # Re-importing the module (tests, reloaders) must not register twice
    try:
        return metric_cls(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


PAYMENT_TRANSITIONS = _get_or_create(
    Counter,
    "payment_transitions_total",
    "Committed payment status transitions",
    ["from_status", "to_status"]
)

PAYMENT_CALLBACKS = _get_or_create(
    Counter,
    "payment_callbacks_total",
    "Gateway callbacks by result",
    ["result"]
)

PAYMENT_EVENTS = _get_or_create(
    Counter,
    "payment_domain_events_total",
    "Payment domain events dispatched",
    ["event"]
)

GATEWAY_REQUEST_DURATION = _get_or_create(
    Histogram,
    "qicard_request_duration_seconds",
    "QiCard API request duration",
    ["operation", "outcome"]
)


def record_transition(previous, current) -> None:
    PAYMENT_TRANSITIONS.labels(
        from_status=getattr(previous, "value", previous),
        to_status=getattr(current, "value", current)
    ).inc()


def record_callback(result: str) -> None:
    PAYMENT_CALLBACKS.labels(result=result).inc()


@contextmanager
def track_gateway_call(operation: str):
    """Time a gateway request, labelling it with how it ended"""
    start = time.perf_counter()
    outcome = "error"
    try:
        yield
        outcome = "ok"
    finally:
        GATEWAY_REQUEST_DURATION.labels(operation=operation, outcome=outcome).observe(
            time.perf_counter() - start
        )
