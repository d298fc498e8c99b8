"""
Field resolution policies at the candidate data boundary.

Candidate records carry a few alternative field names for the same
concept (legacy payment method field, dollar and cent bids, several
timestamps). Each concept is resolved here by an ordered list of field
names, tried in sequence.
"""
from __future__ import annotations

import math
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Tuple
from zoneinfo import ZoneInfo

from crown_settlement.core.domain import Candidate

PAYMENT_METHOD_FIELDS: Tuple[str, ...] = (
    "stripe_default_payment_method_id",
    "default_payment_method_id",
)

TIE_BREAK_FIELDS: Tuple[str, ...] = (
    "bid_updated_at",
    "offer_updated_at",
    "updated_at",
    "created_at",
)

MANUAL_CENTS_FIELDS: Tuple[str, ...] = ("bid_offer_cents", "bid_amount_cents")
MANUAL_DOLLAR_FIELDS: Tuple[str, ...] = ("bid_amount",)


def to_millis(value: Any) -> int:
    """
    Normalize a timestamp to integer epoch milliseconds.

    Accepts aware or naive datetimes (naive is read as UTC), dates,
    numeric milliseconds, and store-native timestamp objects exposing
    ``to_millis()`` or ``timestamp()``. Anything else, including None,
    normalizes to 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, date):
        return to_millis(datetime.combine(value, time.min))
    if isinstance(value, (int, float, Decimal)):
        numeric = float(value)
        return int(numeric) if math.isfinite(numeric) else 0

    to_millis_method = getattr(value, "to_millis", None)
    if callable(to_millis_method):
        return int(to_millis_method())
    timestamp_method = getattr(value, "timestamp", None)
    if callable(timestamp_method):
        return int(timestamp_method() * 1000)
    return 0


def tie_break_millis(candidate: Candidate) -> int:
    """Timestamp used to break equal bids; earliest wins, absent is 0."""
    for field in TIE_BREAK_FIELDS:
        value = getattr(candidate, field, None)
        if value is not None:
            return to_millis(value)
    return 0


def bid_value(candidate: Candidate) -> Decimal:
    """Bid in major units for ranking; missing bids rank as zero."""
    if candidate.bid_amount is None:
        return Decimal("0")
    return Decimal(candidate.bid_amount)


def _round_cents(value: Any) -> Optional[int]:
    try:
        decimal_value = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not decimal_value.is_finite():
        return None
    return int(decimal_value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def dollars_to_cents(value: Any) -> Optional[int]:
    """Convert a major-unit amount to minor units, rounding half up."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return _round_cents(Decimal(str(value)) * 100)
    except (InvalidOperation, ValueError):
        return None


def nightly_amount_cents(candidate: Candidate) -> Optional[int]:
    """Charge amount for the nightly run: dollar bid first, cents bid second."""
    cents = dollars_to_cents(candidate.bid_amount)
    if cents is not None:
        return cents
    if candidate.bid_amount_cents is not None:
        return _round_cents(candidate.bid_amount_cents)
    return None


def manual_amount_cents(
    candidate: Candidate, amount_override: Optional[Any] = None
) -> Optional[int]:
    """Charge amount for a manual assignment: override, then cents, then dollars."""
    if amount_override is not None and not isinstance(amount_override, bool):
        return _round_cents(amount_override)

    for field in MANUAL_CENTS_FIELDS:
        value = getattr(candidate, field, None)
        if value:
            return _round_cents(value)

    for field in MANUAL_DOLLAR_FIELDS:
        value = getattr(candidate, field, None)
        if value:
            return dollars_to_cents(value)

    return None


def payment_method_ref(candidate: Candidate) -> Optional[str]:
    """First non-empty payment method id from the known field names."""
    for field in PAYMENT_METHOD_FIELDS:
        value = getattr(candidate, field, None)
        if isinstance(value, str) and value:
            return value
    return None


def payment_refs(candidate: Candidate) -> Optional[Tuple[str, str]]:
    """(customer, payment method) pair, or None when either is missing."""
    customer_id = candidate.stripe_customer_id
    method_id = payment_method_ref(candidate)
    if not customer_id or not method_id:
        return None
    return customer_id, method_id


def date_key_for(moment: datetime, tz_name: str) -> str:
    """Calendar day ("YYYY-MM-DD") of an instant in the given civil timezone."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name)).strftime("%Y-%m-%d")
