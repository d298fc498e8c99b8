"""
Idempotency keys for crown charges.

Stripe deduplicates requests sharing an idempotency key, so a charge retried
after a timeout for the same day, candidate and amount never charges twice.
Nightly and manual assignments use separate namespaces so that they never
collide with each other.
"""
NIGHTLY_NAMESPACE = "nightly"
MANUAL_NAMESPACE = "admin-assign"


def generate_key(
    namespace: str,
    date_key: str,
    candidate_key: str,
    amount_cents: int,
) -> str:
    """
    Build the idempotency key for one charge attempt.

    Format: {namespace}:{date_key}:{candidate_key}:{amount_cents}

    Args:
        namespace: NIGHTLY_NAMESPACE or MANUAL_NAMESPACE
        date_key: Settlement day ("YYYY-MM-DD")
        candidate_key: Candidate identity
        amount_cents: Charge amount in minor units

    Returns:
        str: Deterministic idempotency key
    """
    if not namespace:
        raise ValueError("Idempotency namespace is required")
    return f"{namespace}:{date_key}:{candidate_key}:{int(amount_cents)}"
