"""
Unit tests for manual crown assignment.
"""
import pytest

from crown_settlement.core.domain import EventType, Provenance
from crown_settlement.core.engine import SettlementEngine
from crown_settlement.core.override import AssignmentError, ManualOverride
from crown_settlement.integrations.stripe_client import StripeError, StripeErrorType


@pytest.fixture
def override(memory_store, gateway, settings, clock) -> ManualOverride:
    return ManualOverride(memory_store, gateway, settings, now=clock)


class TestManualOverride:
    """Test suite for ManualOverride.assign_now()."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_assign_crowns_candidate(self, override, memory_store, gateway, make_candidate, date_key) -> None:
        memory_store.add_candidate(make_candidate("alice", "20.00"))

        result = await override.assign_now("alice", operator="operator_1")

        assert result.uid == "alice"
        assert result.amount_cents == 2000
        assert result.payment_intent_id == memory_store.crown_status.active_charge_ref
        assert gateway.charges[0]["idempotency_key"] == f"admin-assign:{date_key}:alice:2000"

        crown = memory_store.crown_status
        assert crown.active_winner_key == "alice"
        assert crown.assigned_by is Provenance.MANUAL
        assert crown.settlement_date_key == date_key
        assert crown.champion_name == "User alice"

        event = memory_store.events[-1]
        assert (event.event_type, event.provenance) == (EventType.WIN, Provenance.MANUAL)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_override_amount_used(self, override, memory_store, gateway, make_candidate) -> None:
        memory_store.add_candidate(make_candidate("alice", "20.00", bid_offer_cents=1500))

        result = await override.assign_now("alice", amount_override=9900)

        assert result.amount_cents == 9900
        assert gateway.charges[0]["amount_cents"] == 9900

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cents_fields_preferred_over_dollars(self, override, memory_store, gateway, make_candidate) -> None:
        memory_store.add_candidate(make_candidate("alice", "20.00", bid_offer_cents=1500))

        result = await override.assign_now("alice")

        assert result.amount_cents == 1500

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_candidate_is_404(self, override) -> None:
        with pytest.raises(AssignmentError) as exc_info:
            await override.assign_now("ghost")

        assert exc_info.value.status_code == 404

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_payment_refs_is_400(self, override, memory_store, gateway, make_candidate) -> None:
        memory_store.add_candidate(make_candidate("alice", stripe_customer_id=None))

        with pytest.raises(AssignmentError) as exc_info:
            await override.assign_now("alice")

        assert exc_info.value.status_code == 400
        assert gateway.charges == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_amount_below_minimum_is_400(self, override, memory_store, gateway, make_candidate) -> None:
        memory_store.add_candidate(make_candidate("alice", "0.40"))

        with pytest.raises(AssignmentError) as exc_info:
            await override.assign_now("alice")

        assert exc_info.value.status_code == 400
        assert gateway.charges == []
        assert memory_store.crown_status.active_winner_key is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_legacy_method_promoted(self, override, memory_store, gateway, make_candidate) -> None:
        memory_store.add_candidate(
            make_candidate("alice", stripe_default_payment_method_id=None, default_payment_method_id="pm_legacy")
        )

        await override.assign_now("alice")

        assert gateway.charges[0]["payment_method_id"] == "pm_legacy"
        assert memory_store.candidates["alice"].stripe_default_payment_method_id == "pm_legacy"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_decline_is_402_and_recorded(self, override, memory_store, gateway, make_candidate) -> None:
        memory_store.add_candidate(make_candidate("alice"))
        gateway.outcomes["alice"] = StripeError(
            "Your card was declined.", StripeErrorType.PERMANENT, code="card_declined"
        )

        with pytest.raises(AssignmentError) as exc_info:
            await override.assign_now("alice")

        assert exc_info.value.status_code == 402
        assert exc_info.value.details["code"] == "card_declined"
        assert memory_store.crown_status.active_winner_key is None
        event = memory_store.events[-1]
        assert (event.event_type, event.provenance) == (EventType.FAIL, Provenance.MANUAL)
        assert len(gateway.charges) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gateway_outage_is_502(self, override, memory_store, gateway, make_candidate) -> None:
        memory_store.add_candidate(make_candidate("alice"))
        gateway.outcomes["alice"] = StripeError("Circuit breaker is open", StripeErrorType.TRANSIENT)

        with pytest.raises(AssignmentError) as exc_info:
            await override.assign_now("alice")

        assert exc_info.value.status_code == 502

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unclassified_gateway_error_is_502(self, override, memory_store, gateway, make_candidate) -> None:
        memory_store.add_candidate(make_candidate("alice"))
        gateway.outcomes["alice"] = ConnectionResetError("connection reset by peer")

        with pytest.raises(AssignmentError) as exc_info:
            await override.assign_now("alice")

        assert exc_info.value.status_code == 502
        assert exc_info.value.details["details"] == "connection reset by peer"
        assert memory_store.crown_status.active_winner_key is None
        event = memory_store.events[-1]
        assert (event.event_type, event.failure_reason) == (EventType.FAIL, "connection reset by peer")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_succeeded_status_is_402(self, override, memory_store, gateway, make_candidate) -> None:
        memory_store.add_candidate(make_candidate("alice"))
        gateway.outcomes["alice"] = "requires_action"

        with pytest.raises(AssignmentError) as exc_info:
            await override.assign_now("alice")

        assert exc_info.value.status_code == 402
        assert exc_info.value.details["status"] == "requires_action"
        assert memory_store.events[-1].failure_reason == "status: requires_action"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_manual_win_blocks_same_day_nightly(
        self, override, memory_store, gateway, settings, clock, make_candidate
    ) -> None:
        memory_store.add_candidate(make_candidate("alice", "10.00"))
        memory_store.add_candidate(make_candidate("bob", "90.00"))
        await override.assign_now("alice")

        outcome = await SettlementEngine(memory_store, gateway, settings, now=clock).run()

        assert outcome.status.value == "already_settled"
        assert gateway.charged_keys == ["alice"]
        assert memory_store.crown_status.active_winner_key == "alice"
