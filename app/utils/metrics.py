"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
webhook_events_total = Counter(
    "webhook_events_total",
    "Total verified webhook events by type and outcome",
    ["event_type", "outcome"],  # settled, duplicate, ignored, rejected, failed
)

webhook_signature_failures_total = Counter(
    "webhook_signature_failures_total",
    "Total webhook requests rejected for a bad signature",
)

settlements_total = Counter(
    "settlements_total",
    "Total settled sales",
)

settlement_duplicates_total = Counter(
    "settlement_duplicates_total",
    "Total duplicate payment-completion deliveries",
    ["detected_by"],  # lookup, constraint
)

validation_failures_total = Counter(
    "validation_failures_total",
    "Total failed session validations by issue code",
    ["code"],
)

side_effect_failures_total = Counter(
    "side_effect_failures_total",
    "Total failed side-effect attempts (each retry counts)",
    ["effect"],  # download_tokens, invoice, confirmation
)

download_redemptions_total = Counter(
    "download_redemptions_total",
    "Total download token redemptions by result",
    ["result"],  # ok, not_found, expired, limit_reached
)

commissions_cleared_total = Counter(
    "commissions_cleared_total",
    "Total affiliate commissions moved from pending to available",
)

email_requests_total = Counter(
    "email_requests_total",
    "Total outbound e-mail requests",
    ["status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
settlement_amount = Histogram(
    "settlement_amount",
    "Gross amount of settled sales",
    buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000],
)

webhook_processing_seconds = Histogram(
    "webhook_processing_seconds",
    "Time from verified webhook to acknowledgement",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5],
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
