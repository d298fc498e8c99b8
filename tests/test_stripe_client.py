"""
Unit tests for the Stripe client.
"""
from unittest.mock import MagicMock

import pytest
import stripe
from tenacity import wait_none

from crown_settlement.integrations.stripe_client import (
    CircuitBreaker,
    StripeClient,
    StripeError,
    StripeErrorType,
)


@pytest.fixture
def client(settings) -> StripeClient:
    return StripeClient(settings)


@pytest.fixture
def no_backoff(mocker) -> None:
    mocker.patch.object(StripeClient.create_and_confirm_charge.retry, "wait", wait_none())


class TestErrorClassification:
    """Test suite for Stripe error classification."""

    @pytest.mark.unit
    def test_classification(self) -> None:
        classify = StripeClient._classify_error

        assert classify(stripe.RateLimitError("slow down")) is StripeErrorType.RATE_LIMIT
        assert classify(stripe.APIConnectionError("timeout")) is StripeErrorType.TRANSIENT
        assert classify(stripe.APIError("500")) is StripeErrorType.TRANSIENT
        assert classify(stripe.CardError("declined", None, "card_declined")) is StripeErrorType.PERMANENT
        assert classify(stripe.InvalidRequestError("bad", "amount")) is StripeErrorType.PERMANENT
        assert classify(stripe.AuthenticationError("bad key")) is StripeErrorType.PERMANENT


class TestCreateAndConfirmCharge:
    """Test suite for off-session charges."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success(self, client, mocker) -> None:
        create = mocker.patch("stripe.PaymentIntent.create", return_value=MagicMock(id="pi_123", status="succeeded"))

        result = await client.create_and_confirm_charge(
            amount_cents=2500,
            currency="USD",
            customer_id="cus_1",
            payment_method_id="pm_1",
            idempotency_key="nightly:2025-01-06:alice:2500",
            metadata={"uid": "alice"},
        )

        assert result.succeeded
        assert result.charge_ref == "pi_123"
        kwargs = create.call_args.kwargs
        assert kwargs["confirm"] is True
        assert kwargs["off_session"] is True
        assert kwargs["currency"] == "usd"
        assert kwargs["idempotency_key"] == "nightly:2025-01-06:alice:2500"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_decline_not_retried(self, client, mocker) -> None:
        create = mocker.patch(
            "stripe.PaymentIntent.create",
            side_effect=stripe.CardError("Your card was declined.", None, "card_declined"),
        )

        with pytest.raises(StripeError) as exc_info:
            await client.create_and_confirm_charge(2500, "usd", "cus_1", "pm_1", "key")

        assert exc_info.value.error_type is StripeErrorType.PERMANENT
        assert exc_info.value.code == "card_declined"
        assert create.call_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transient_error_retried_with_same_key(self, client, mocker, no_backoff) -> None:
        create = mocker.patch(
            "stripe.PaymentIntent.create",
            side_effect=[
                stripe.APIConnectionError("network down"),
                MagicMock(id="pi_123", status="succeeded"),
            ],
        )

        result = await client.create_and_confirm_charge(2500, "usd", "cus_1", "pm_1", "same-key")

        assert result.charge_ref == "pi_123"
        assert create.call_count == 2
        keys = [call.kwargs["idempotency_key"] for call in create.call_args_list]
        assert keys == ["same-key", "same-key"]


class TestCircuitBreaker:
    """Test suite for CircuitBreaker."""

    @pytest.mark.unit
    def test_opens_after_service_failures(self) -> None:
        breaker = CircuitBreaker(failure_threshold=2)

        def failing() -> None:
            raise stripe.APIConnectionError("down")

        for _ in range(2):
            with pytest.raises(stripe.APIConnectionError):
                breaker.call(failing)

        assert breaker.state == "open"
        with pytest.raises(StripeError, match="Circuit breaker is open"):
            breaker.call(lambda: None)

    @pytest.mark.unit
    def test_declines_do_not_open_circuit(self) -> None:
        breaker = CircuitBreaker(failure_threshold=2)

        def declining() -> None:
            raise stripe.CardError("declined", None, "card_declined")

        for _ in range(5):
            with pytest.raises(stripe.CardError):
                breaker.call(declining)

        assert breaker.state == "closed"
