"""Prometheus metrics for monitoring settlement outcomes, partial writes, and gateway performance"""

from decimal import Decimal

from prometheus_client import Counter, Histogram

# Settlement metrics
settlement_counter = Counter(
    "pos_settlement_total",
    "Total settlements attempted",
    ["method", "outcome"],  # outcome: settled | failed
)

settlement_amount_histogram = Histogram(
    "pos_settlement_amount_dollars",
    "Final totals of settled transactions",
    buckets=[0, 5, 10, 25, 50, 100, 250, 500, 1000],
)

partial_write_failure_counter = Counter(
    "pos_partial_write_failures_total",
    "Steps that failed after the transaction row was committed",
    ["step"],
)

# Gateway and terminal metrics
gateway_latency_histogram = Histogram(
    "pos_gateway_latency_seconds",
    "Payment gateway and terminal response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

gateway_failure_counter = Counter(
    "pos_gateway_failures_total",
    "Failed payment gateway or terminal calls",
    ["operation"],
)

# Ledger metrics
loyalty_points_counter = Counter(
    "pos_loyalty_points_total",
    "Loyalty points posted to the ledger",
    ["type"],  # earn | redeem
)

gift_card_redemption_counter = Counter(
    "pos_gift_card_redemptions_total",
    "Gift card redemption attempts",
    ["outcome"],  # posted | rejected | duplicate
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_settlement(method: str, settled: bool, final_total: Decimal | None = None) -> None:
    """Record settlement outcome, and the settled amount for distribution analysis"""
    outcome = "settled" if settled else "failed"
    settlement_counter.labels(method=method, outcome=outcome).inc()

    if settled and final_total is not None:
        settlement_amount_histogram.observe(float(final_total))


def record_partial_write(step: str) -> None:
    partial_write_failure_counter.labels(step=step).inc()
