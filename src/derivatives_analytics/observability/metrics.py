"""Prometheus metrics for the derivatives analytics service.

All names carry the ``dae_`` prefix. HTTP metrics are labelled by route
template, engine metrics by engine name and analytics metrics by operation.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

HTTP_LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
MODEL_LATENCY_BUCKETS = (0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
ADMISSION_WAIT_BUCKETS = (0.0001, 0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0)

# HTTP surface
REQUEST_COUNT = Counter(
    "dae_request_total",
    "HTTP requests handled, by route template and status",
    labelnames=("method", "route", "status_code"),
)
REQUEST_ERRORS = Counter(
    "dae_request_errors_total",
    "HTTP responses with a 5xx status",
    labelnames=("method", "route", "status_code"),
)
REQUEST_LATENCY = Histogram(
    "dae_request_latency_seconds",
    "Wall-clock time from request receipt to response",
    labelnames=("method", "route"),
    buckets=HTTP_LATENCY_BUCKETS,
)
RATE_LIMIT_REJECTIONS = Counter(
    "dae_rate_limit_rejections_total",
    "Requests refused with 429 by the rate limiter",
    labelnames=("route",),
)
PAYLOAD_TOO_LARGE = Counter(
    "dae_payload_too_large_total",
    "Requests refused with 413 because the body exceeded its limit",
    labelnames=("route",),
)

# Pricing engine
MODEL_LATENCY = Histogram(
    "dae_model_latency_seconds",
    "Time to produce a price and greeks, by model family",
    labelnames=("model",),
    buckets=MODEL_LATENCY_BUCKETS,
)
MODEL_ERRORS = Counter(
    "dae_model_errors_total",
    "Pricing model evaluations that raised",
    labelnames=("model",),
)
CACHE_HITS = Counter(
    "dae_cache_hits_total",
    "Pricing results served from the engine cache",
    labelnames=("engine",),
)
CACHE_MISSES = Counter(
    "dae_cache_misses_total",
    "Pricing results computed because no fresh cached entry existed",
    labelnames=("engine",),
)
THREADPOOL_WORKERS = Gauge(
    "dae_threadpool_workers",
    "Worker threads configured for the engine",
    labelnames=("engine",),
)
THREADPOOL_IN_FLIGHT = Gauge(
    "dae_threadpool_tasks_in_flight",
    "Pricing tasks currently running on a worker",
    labelnames=("engine",),
)
THREADPOOL_QUEUE_DEPTH = Gauge(
    "dae_threadpool_queue_depth",
    "Admitted pricing tasks waiting for a free worker",
    labelnames=("engine",),
)
THREADPOOL_QUEUE_WAIT = Histogram(
    "dae_threadpool_queue_wait_seconds",
    "Time callers waited for an admission slot",
    labelnames=("engine",),
    buckets=ADMISSION_WAIT_BUCKETS,
)
THREADPOOL_REJECTIONS = Counter(
    "dae_threadpool_rejections_total",
    "Pricing tasks refused because every admission slot was taken",
    labelnames=("engine",),
)

# Analytics operations
CALCULATIONS = Counter(
    "dae_calculations_total",
    "Completed analytics operations",
    labelnames=("operation",),
)
CALCULATION_WARNINGS = Counter(
    "dae_calculation_warnings_total",
    "Warnings attached to analytics results",
    labelnames=("operation",),
)
IV_NON_CONVERGENCE = Counter(
    "dae_implied_volatility_non_convergence_total",
    "Implied volatility solves that stopped without converging",
    labelnames=("model",),
)
EVENT_PUBLISH_FAILURES = Counter(
    "dae_event_publish_failures_total",
    "Domain events that could not be published",
    labelnames=("event",),
)
