"""
Unit tests for candidate ranking and field resolution.
"""
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from crown_settlement.core.domain import Candidate
from crown_settlement.core.ranking import rank
from crown_settlement.core.resolution import (
    date_key_for,
    manual_amount_cents,
    nightly_amount_cents,
    payment_refs,
    tie_break_millis,
    to_millis,
)


class TestRank:
    """Test suite for rank()."""

    @pytest.mark.unit
    def test_highest_bid_first(self, make_candidate) -> None:
        candidates = [
            make_candidate("a", "20.00"),
            make_candidate("b", "75.50"),
            make_candidate("c", "40.00"),
        ]

        assert [c.key for c in rank(candidates)] == ["b", "c", "a"]

    @pytest.mark.unit
    def test_inactive_candidates_dropped(self, make_candidate) -> None:
        candidates = [
            make_candidate("a", "90.00", is_active=False),
            make_candidate("b", "10.00"),
        ]

        assert [c.key for c in rank(candidates)] == ["b"]

    @pytest.mark.unit
    def test_no_active_candidates_gives_empty_list(self, make_candidate) -> None:
        candidates = [make_candidate("a", is_active=False), make_candidate("b", is_active=False)]

        assert rank(candidates) == []

    @pytest.mark.unit
    def test_earlier_bid_wins_tie(self, make_candidate) -> None:
        a = make_candidate("a", "50.00", bid_updated_at=datetime(2025, 1, 5, 10, 0, tzinfo=timezone.utc))
        b = make_candidate("b", "50.00", bid_updated_at=datetime(2025, 1, 5, 9, 0, tzinfo=timezone.utc))

        assert [c.key for c in rank([a, b])] == ["b", "a"]

    @pytest.mark.unit
    def test_missing_timestamp_sorts_as_earliest(self, make_candidate) -> None:
        a = make_candidate("a", "50.00", bid_updated_at=datetime(2025, 1, 5, tzinfo=timezone.utc))
        b = make_candidate("b", "50.00")

        assert [c.key for c in rank([a, b])] == ["b", "a"]

    @pytest.mark.unit
    def test_key_breaks_full_ties(self, make_candidate) -> None:
        candidates = [make_candidate(key, "30.00") for key in ("zed", "amy", "max")]

        assert [c.key for c in rank(candidates)] == ["amy", "max", "zed"]

    @pytest.mark.unit
    def test_rank_is_deterministic(self, make_candidate) -> None:
        candidates = [
            make_candidate("c", "30.00", created_at=1_700_000_000_000),
            make_candidate("a", "30.00"),
            make_candidate("b", "45.00"),
            make_candidate("d", "30.00", created_at=1_600_000_000_000),
        ]

        first = [c.key for c in rank(candidates)]
        second = [c.key for c in rank(list(reversed(candidates)))]

        assert first == second == ["b", "a", "d", "c"]


class TestTimestampResolution:
    """Test suite for tie-break timestamp normalization."""

    @pytest.mark.unit
    def test_naive_datetime_is_utc(self) -> None:
        naive = datetime(1970, 1, 1, 0, 0, 1)

        assert to_millis(naive) == 1000

    @pytest.mark.unit
    def test_date_is_midnight_utc(self) -> None:
        assert to_millis(date(1970, 1, 2)) == 86_400_000

    @pytest.mark.unit
    def test_numbers_are_epoch_millis(self) -> None:
        assert to_millis(1234) == 1234
        assert to_millis(12.9) == 12

    @pytest.mark.unit
    def test_objects_with_to_millis(self) -> None:
        class StoreTimestamp:
            def to_millis(self) -> int:
                return 42

        assert to_millis(StoreTimestamp()) == 42

    @pytest.mark.unit
    def test_unknown_values_are_zero(self) -> None:
        assert to_millis(None) == 0
        assert to_millis("yesterday") == 0
        assert to_millis(float("nan")) == 0

    @pytest.mark.unit
    def test_first_present_field_used(self) -> None:
        candidate = Candidate(
            key="a",
            offer_updated_at=5000,
            updated_at=7000,
            created_at=1000,
        )

        assert tie_break_millis(candidate) == 5000

    @pytest.mark.unit
    def test_epoch_zero_is_a_present_value(self) -> None:
        candidate = Candidate(key="a", bid_updated_at=0, updated_at=7000)

        assert tie_break_millis(candidate) == 0

    @pytest.mark.unit
    def test_epoch_zero_bid_ranks_first_on_tie(self) -> None:
        early = Candidate(key="z", bid_amount=Decimal("5"), is_active=True, bid_updated_at=0, updated_at=9000)
        late = Candidate(key="a", bid_amount=Decimal("5"), is_active=True, bid_updated_at=10, updated_at=10)

        assert [c.key for c in rank([late, early])] == ["z", "a"]


class TestAmountResolution:
    """Test suite for charge amount resolution."""

    @pytest.mark.unit
    def test_nightly_rounds_dollars_half_up(self) -> None:
        assert nightly_amount_cents(Candidate(key="a", bid_amount=Decimal("12.345"))) == 1235
        assert nightly_amount_cents(Candidate(key="a", bid_amount=Decimal("0.30"))) == 30

    @pytest.mark.unit
    def test_nightly_falls_back_to_cents(self) -> None:
        assert nightly_amount_cents(Candidate(key="a", bid_amount_cents=4200)) == 4200
        assert nightly_amount_cents(Candidate(key="a")) is None

    @pytest.mark.unit
    def test_manual_prefers_override(self) -> None:
        candidate = Candidate(key="a", bid_amount=Decimal("10"), bid_offer_cents=700)

        assert manual_amount_cents(candidate, 9900) == 9900

    @pytest.mark.unit
    def test_manual_prefers_cents_over_dollars(self) -> None:
        candidate = Candidate(
            key="a", bid_amount=Decimal("10"), bid_offer_cents=700, bid_amount_cents=800
        )

        assert manual_amount_cents(candidate) == 700
        assert manual_amount_cents(candidate.model_copy(update={"bid_offer_cents": None})) == 800

    @pytest.mark.unit
    def test_manual_falls_back_to_dollars(self) -> None:
        assert manual_amount_cents(Candidate(key="a", bid_amount=Decimal("10.50"))) == 1050


class TestPaymentRefs:
    """Test suite for payment reference resolution."""

    @pytest.mark.unit
    def test_current_method_field_preferred(self) -> None:
        candidate = Candidate(
            key="a",
            stripe_customer_id="cus_1",
            stripe_default_payment_method_id="pm_new",
            default_payment_method_id="pm_old",
        )

        assert payment_refs(candidate) == ("cus_1", "pm_new")

    @pytest.mark.unit
    def test_legacy_method_field_used(self) -> None:
        candidate = Candidate(key="a", stripe_customer_id="cus_1", default_payment_method_id="pm_old")

        assert payment_refs(candidate) == ("cus_1", "pm_old")

    @pytest.mark.unit
    def test_missing_customer_or_method(self) -> None:
        assert payment_refs(Candidate(key="a", stripe_customer_id="cus_1")) is None
        assert payment_refs(Candidate(key="a", default_payment_method_id="pm_1")) is None


class TestDateKey:
    """Test suite for settlement day computation."""

    @pytest.mark.unit
    def test_uses_civil_timezone(self) -> None:
        # 03:00 UTC is still the previous evening in Chicago
        moment = datetime(2025, 1, 6, 3, 0, tzinfo=timezone.utc)

        assert date_key_for(moment, "America/Chicago") == "2025-01-05"
        assert date_key_for(moment, "UTC") == "2025-01-06"
