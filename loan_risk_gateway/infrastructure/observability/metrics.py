"""Prometheus metrics for quoted rates, payments, collateral health and webhook performance"""

from prometheus_client import Counter, Histogram

from loan_risk_gateway.domain.models import HealthReport, RateQuote

# Quote metrics
quote_counter = Counter(
    "loan_quote_total",
    "Total rate quotes issued",
    ["risk_level"],  # low | medium | high | very_high
)

quoted_rate_histogram = Histogram(
    "loan_quoted_rate_bps",
    "Distribution of quoted rates in basis points",
    buckets=[200, 500, 800, 1000, 1500, 2000, 2500, 3500, 5000],
)

# Loan lifecycle metrics
loan_event_counter = Counter(
    "loan_events_total",
    "Loan lifecycle events",
    ["event"],  # funded | top_up | withdraw | payment | settle | default_check
)

payment_counter = Counter(
    "loan_payments_total",
    "Payment attempts by outcome",
    ["outcome"],  # applied | paid_off | rejected
)

health_evaluation_counter = Counter(
    "collateral_health_evaluations_total",
    "Collateral health evaluations by status",
    ["status", "partial"],
)

# Price service metrics
price_lookup_failures_counter = Counter(
    "price_lookup_failures_total",
    "Failed or unusable price lookups",
    ["reason"],
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "settlement_webhook_latency_seconds",
    "Settlement webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "settlement_webhook_failures_total",
    "Failed settlement webhook deliveries",
    ["event"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_quote(quote: RateQuote) -> None:
    """Record quote metrics for monitoring rate distribution"""
    quote_counter.labels(risk_level=quote.risk_level).inc()
    quoted_rate_histogram.observe(quote.rate_bps)


def record_health(report: HealthReport) -> None:
    health_evaluation_counter.labels(status=report.status.value, partial=str(report.partial).lower()).inc()
    for reason in {a.missing_reason for a in report.assets if a.missing_reason}:
        price_lookup_failures_counter.labels(reason=reason).inc()
