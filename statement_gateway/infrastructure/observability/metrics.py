"""Prometheus metrics for statement imports, expand/collapse and mismatches"""

from prometheus_client import Counter, Histogram

# Import metrics
statement_import_counter = Counter(
    "statement_import_total",
    "Statement import steps by outcome",
    ["step", "outcome"],  # step: preview | match | confirm; outcome: ok | <error code>
)

statement_lines_histogram = Histogram(
    "statement_lines",
    "Lines per parsed statement",
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000],
)

# Ledger mutation metrics
ledger_operation_counter = Counter(
    "bill_payment_operations_total",
    "Expand/collapse/link operations by outcome",
    ["operation", "outcome"],
)

mismatch_counter = Counter(
    "cc_mismatch_registered_total",
    "Mismatch markers registered",
    ["kind"],  # delta | unmatched
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_import_step(step: str, outcome: str = "ok", line_count: int | None = None) -> None:
    """Record an import step outcome; line counts only for successful parses"""
    statement_import_counter.labels(step=step, outcome=outcome).inc()
    if line_count is not None:
        statement_lines_histogram.observe(line_count)


def record_ledger_operation(operation: str, outcome: str = "ok") -> None:
    ledger_operation_counter.labels(operation=operation, outcome=outcome).inc()


def record_mismatch(kind: str) -> None:
    mismatch_counter.labels(kind=kind).inc()
