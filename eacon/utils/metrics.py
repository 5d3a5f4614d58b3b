"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
payments_created_total = Counter(
    "payments_created_total",
    "Total number of checkout sessions created",
    ["package_type"],
)

payment_create_rejected_total = Counter(
    "payment_create_rejected_total",
    "Payment creations rejected before reaching the gateway",
    ["reason"],  # invalid_amount, too_many_attempts, rate_limited, gateway_unavailable
)

payment_settlements_total = Counter(
    "payment_settlements_total",
    "Settlement attempts by trigger and outcome",
    ["trigger", "outcome"],  # outcome: settled, already_processed, unpaid, mismatch, not_found, voided, conflict, gateway_error
)

tokens_credited_total = Counter(
    "tokens_credited_total",
    "Tokens credited by settled purchases",
)

suspicious_payments_total = Counter(
    "suspicious_payments_total",
    "Settlements rejected by the amount integrity check",
)

duplicate_tokens_removed_total = Counter(
    "duplicate_tokens_removed_total",
    "Tokens removed by duplicate-credit reconciliation",
)

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway requests",
    ["operation", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway request duration",
    ["operation"],
    buckets=[0.1, 0.5, 1, 2, 5, 10],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
