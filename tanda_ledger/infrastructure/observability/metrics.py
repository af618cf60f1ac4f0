"""Prometheus metrics for collection progress, payouts and webhook delivery"""

from prometheus_client import Counter, Histogram

# Ledger metrics
payment_action_counter = Counter(
    "tanda_payment_action_total",
    "Round payment actions handled",
    ["action", "outcome"],  # outcome: ok | rejected | not_found | cooldown
)

# Payout metrics
payout_counter = Counter(
    "tanda_payout_released_total",
    "Payouts released",
    ["kind"],  # in_turn | early
)

payout_amount_histogram = Histogram(
    "tanda_payout_amount_cents",
    "Released payout amounts in cents",
    buckets=[1_000, 5_000, 10_000, 25_000, 50_000, 100_000, 250_000],
)

payout_blocked_counter = Counter(
    "tanda_payout_blocked_total",
    "Payout evaluations that came back not allowed",
    ["blocker"],
)

settlement_conflict_counter = Counter(
    "tanda_settlement_conflict_total",
    "Payout releases rejected because the round already had a payout",
)

rounds_advanced_counter = Counter(
    "tanda_rounds_advanced_total",
    "Rounds closed and rotated",
    ["result"],  # next_round | pool_completed
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Notification webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_payout(amount_cents: int, early: bool) -> None:
    """Record a released payout by kind and size"""
    payout_counter.labels(kind="early" if early else "in_turn").inc()
    payout_amount_histogram.observe(amount_cents)


def record_blockers(blockers) -> None:
    for blocker in blockers:
        payout_blocked_counter.labels(blocker=blocker.value).inc()
