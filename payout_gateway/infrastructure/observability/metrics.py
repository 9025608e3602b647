"""Prometheus metrics for withdrawal outcomes, audit results and fee calculation failures"""

from prometheus_client import Counter, Histogram

from payout_gateway.domain.models import AuditReport, CorrectionReport

# Withdrawal metrics
withdrawal_request_counter = Counter(
    "payout_withdrawal_requests_total",
    "Withdrawal requests and confirmations by outcome",
    ["step", "outcome"],  # step: request | confirm; outcome: accepted | <error code>
)

withdrawal_committed_counter = Counter(
    "payout_withdrawals_committed_total",
    "Withdrawals committed after passcode confirmation",
)

withdrawal_amount_histogram = Histogram(
    "payout_withdrawal_amount_cents",
    "Requested amount of committed withdrawals",
    buckets=[5_000, 10_000, 50_000, 100_000, 500_000, 1_000_000, 5_000_000],
)

# Audit metrics
audit_result_counter = Counter(
    "payout_audit_results_total",
    "Audited transactions by reconciliation status",
    ["status"],  # correct | corrected | divergent
)

audit_correction_counter = Counter(
    "payout_audit_corrections_total",
    "Fee corrections applied by the auditor",
    ["outcome"],  # corrected | error
)

# Fee calculator
fee_error_counter = Counter(
    "payout_fee_calculation_errors_total",
    "Fee calculations that raised",
    ["operation", "error"],
)

# OTP service
otp_failure_counter = Counter(
    "otp_channel_failures_total",
    "Failed OTP service calls",
    ["operation"],  # send | verify
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_withdrawal_request(step: str, outcome: str) -> None:
    """Count a request/confirm outcome ("accepted" or the rejection code)"""
    withdrawal_request_counter.labels(step=step, outcome=outcome).inc()


def record_withdrawal_committed(amount_cents: int) -> None:
    withdrawal_committed_counter.inc()
    withdrawal_amount_histogram.observe(amount_cents)


def record_audit(report: AuditReport) -> None:
    """Record one counter increment per audited transaction"""
    for result in report.results:
        audit_result_counter.labels(status=result.status.value).inc()


def record_corrections(report: CorrectionReport) -> None:
    if report.corrected:
        audit_correction_counter.labels(outcome="corrected").inc(report.corrected)
    if report.errors:
        audit_correction_counter.labels(outcome="error").inc(report.errors)


def record_fee_error(operation: str, error: Exception) -> None:
    fee_error_counter.labels(operation=operation, error=error.__class__.__name__).inc()
