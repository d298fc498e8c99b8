"""
Prometheus metrics for settlement monitoring.

Tracks:
- Settlement runs by outcome
- Lock acquisition results
- Charge attempts by provenance and result
- Stripe API calls and errors
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Settlement metrics
settlement_runs_total = Counter(
    "crown_settlement_runs_total",
    "Total settlement runs",
    ["outcome"],  # won, already_settled, already_settling, no_candidates, ...
)

settlement_duration_seconds = Histogram(
    "crown_settlement_duration_seconds",
    "Settlement run duration in seconds",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)

settlement_last_success_timestamp = Gauge(
    "crown_settlement_last_success_timestamp",
    "Timestamp of the last settlement run that crowned a winner",
)

settlement_lock_results_total = Counter(
    "crown_settlement_lock_results_total",
    "Lock acquisition results",
    ["state"],  # acquired, already_settled, already_settling
)

# Charge metrics
charge_attempts_total = Counter(
    "crown_charge_attempts_total",
    "Charge attempts per candidate",
    ["provenance", "result"],  # result: succeeded, declined, skipped, error
)

charge_amount_cents = Histogram(
    "crown_charge_amount_cents",
    "Successful crown charge amounts in cents",
    buckets=(50, 100, 500, 1000, 5000, 10000, 50000, 100000, 500000),
)

# Stripe API metrics
stripe_api_requests_total = Counter(
    "crown_stripe_api_requests_total",
    "Total Stripe API requests",
    ["operation", "status"],
)

stripe_api_errors_total = Counter(
    "crown_stripe_api_errors_total",
    "Total Stripe API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

stripe_api_duration_seconds = Histogram(
    "crown_stripe_api_duration_seconds",
    "Stripe API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

stripe_circuit_breaker_state = Gauge(
    "crown_stripe_circuit_breaker_state",
    "Stripe circuit breaker state (0=closed, 1=open, 2=half_open)",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_settlement_run(outcome: str, duration_seconds: float) -> None:
        """Record a finished settlement run."""
        settlement_runs_total.labels(outcome=outcome).inc()
        settlement_duration_seconds.observe(duration_seconds)
        if outcome == "won":
            settlement_last_success_timestamp.set(time.time())

    @staticmethod
    def record_lock_result(state: str) -> None:
        """Record a lock acquisition attempt."""
        settlement_lock_results_total.labels(state=state).inc()

    @staticmethod
    def record_charge_attempt(provenance: str, result: str, amount_cents: int = 0) -> None:
        """Record a single candidate charge attempt."""
        charge_attempts_total.labels(provenance=provenance, result=result).inc()
        if result == "succeeded":
            charge_amount_cents.observe(amount_cents)

    @staticmethod
    def record_stripe_api_call(
        operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record Stripe API call."""
        stripe_api_requests_total.labels(operation=operation, status=status).inc()
        stripe_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_stripe_api_error(error_type: str) -> None:
        """Record Stripe API error."""
        stripe_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        stripe_circuit_breaker_state.set(state_map.get(state, 0))


# Export singleton instance
metrics = MetricsCollector()
