"""Prometheus metrics for cache efficiency, fallback usage, connectivity and recommendations"""

from prometheus_client import Counter, Gauge, Histogram

# Cache metrics
cache_requests_counter = Counter(
    "fincalc_cache_requests_total",
    "Cache lookups",
    ["result"],  # hit | miss
)

cache_errors_counter = Counter(
    "fincalc_cache_errors_total",
    "Cache operations that failed against the storage medium",
    ["operation"],
)

cache_refresh_counter = Counter(
    "fincalc_cache_refresh_total",
    "Background cache refreshes",
    ["outcome"],  # success | failure
)

# Fallback metrics
fallback_attempts_counter = Counter(
    "fincalc_fallback_attempts_total",
    "Fallback strategy attempts",
    ["data_type", "strategy", "outcome"],
)

# Reference-data endpoint metrics
fee_data_latency_histogram = Histogram(
    "fincalc_fee_data_latency_seconds",
    "Reference-data endpoint response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

fee_data_fetch_failures_counter = Counter(
    "fincalc_fee_data_fetch_failures_total",
    "Failed reference-data endpoint calls",
)

network_online_gauge = Gauge(
    "fincalc_network_online",
    "1 while the fee data manager is in online mode, 0 when offline",
)

# Recommendation metrics
recommendations_counter = Counter(
    "fincalc_recommendations_total",
    "Recommendation lists served",
    ["kind"],  # personalized | general | cross
)

recommendation_score_bucket_counter = Counter(
    "fincalc_recommendation_score_bucket",
    "Top recommendation scores by bucket",
    ["bucket"],  # 0-40, 40-60, 60-80, 80+
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_recommendations(kind: str, top_score: float | None) -> None:
    """Record a served list and bucket its best score"""
    recommendations_counter.labels(kind=kind).inc()
    if top_score is None:
        return

    if top_score < 40:
        bucket = "0-40"
    elif top_score < 60:
        bucket = "40-60"
    elif top_score < 80:
        bucket = "60-80"
    else:
        bucket = "80+"

    recommendation_score_bucket_counter.labels(bucket=bucket).inc()


def record_network_mode(is_online: bool) -> None:
    network_online_gauge.set(1 if is_online else 0)
