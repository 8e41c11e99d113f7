"""Prometheus instruments for the reconcile runner.

Nothing here starts an HTTP server; the instruments live in the default
registry for whoever embeds the controller to expose.
"""

from prometheus_client import Counter, Gauge, Histogram

RECONCILE_TOTAL = Counter(
    "kuber_reconcile_total",
    "Reconciles processed, by controller and result",
    ["controller", "result"],
)

RECONCILE_ERRORS = Counter(
    "kuber_reconcile_errors_total",
    "Reconciles that returned an error",
    ["controller"],
)

RECONCILE_TIME = Histogram(
    "kuber_reconcile_time_seconds",
    "Time spent in a single reconcile",
    ["controller"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

WORKQUEUE_DEPTH = Gauge(
    "kuber_workqueue_depth",
    "Requests waiting in a work queue",
    ["name"],
)

WORKQUEUE_RETRIES = Counter(
    "kuber_workqueue_retries_total",
    "Rate-limited re-adds to a work queue",
    ["name"],
)
