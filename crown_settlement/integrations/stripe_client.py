"""
Stripe API client with retry logic and error classification.

Implements:
- Exponential backoff for transient errors (same idempotency key on retry)
- Circuit breaker pattern
- Off-session, confirm-immediately charges
- Customer, payment method and SetupIntent helpers for card vaulting
"""
import asyncio
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

import stripe
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from crown_settlement.config import Settings, get_settings
from crown_settlement.core.domain import ChargeResult
from crown_settlement.integrations.gateway import PaymentMethodInfo
from crown_settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

R = TypeVar("R")


class StripeErrorType(Enum):
    """Classification of Stripe errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class StripeError(Exception):
    """Gateway-level failure raised by every StripeClient call."""

    def __init__(
        self,
        message: str,
        error_type: StripeErrorType,
        original_error: Optional[Exception] = None,
        code: Optional[str] = None,
    ):
        """
        Initialize Stripe error.

        Args:
            message: Error message
            error_type: Classification of error
            original_error: Original Stripe exception
            code: Stripe error code (e.g. card_declined, authentication_required)
        """
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error
        self.code = code

    @property
    def retryable(self) -> bool:
        return self.error_type is not StripeErrorType.PERMANENT


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, StripeError) and error.retryable


def _is_service_failure(error: BaseException) -> bool:
    # Declines and bad requests say nothing about Stripe's availability
    return not isinstance(error, (stripe.CardError, stripe.InvalidRequestError))


class CircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Stops sending requests for a while once availability failures pile up.
    Card declines are expected outcomes and do not count.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)

    def call(self, func: Callable[[], R]) -> R:
        """
        Execute function with circuit breaker protection.

        Raises:
            StripeError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.time() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise StripeError(
                    "Circuit breaker is open",
                    StripeErrorType.TRANSIENT,
                )

        try:
            result = func()
        except Exception as e:
            if _is_service_failure(e):
                self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )


stripe_retry = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    reraise=True,
)


class StripeClient:
    """
    PaymentGateway implementation on the Stripe SDK.

    The SDK is synchronous; calls run in a worker thread so the event
    loop stays responsive.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """Initialize Stripe client."""
        settings = settings or get_settings()
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.settings = settings
        self.circuit_breaker = CircuitBreaker()

        logger.info(
            "stripe_client_initialized",
            api_version=stripe.api_version,
            test_mode=settings.is_test_mode,
        )

    @staticmethod
    def _classify_error(error: Exception) -> StripeErrorType:
        """
        Classify Stripe error for retry logic.

        Args:
            error: Stripe error

        Returns:
            StripeErrorType: Error classification
        """
        if isinstance(error, stripe.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return StripeErrorType.TRANSIENT
        elif isinstance(
            error,
            (
                stripe.CardError,
                stripe.InvalidRequestError,
                stripe.AuthenticationError,
                stripe.PermissionError,
                stripe.IdempotencyError,
            ),
        ):
            return StripeErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return StripeErrorType.TRANSIENT

    def _handle_stripe_error(self, operation: str, error: stripe.StripeError) -> StripeError:
        """Log, count and wrap a Stripe SDK error."""
        error_type = self._classify_error(error)
        code = getattr(error, "code", None)

        logger.error(
            "stripe_api_error",
            operation=operation,
            error_type=error_type.value,
            error_code=code,
            error_message=str(error),
        )
        metrics.record_stripe_api_error(error_type.value)

        message = getattr(error, "user_message", None) or str(error)
        return StripeError(
            message=message,
            error_type=error_type,
            original_error=error,
            code=code,
        )

    async def _call(self, operation: str, func: Callable[[], R]) -> R:
        start_time = time.time()
        try:
            result = await asyncio.to_thread(self.circuit_breaker.call, func)
        except stripe.StripeError as e:
            metrics.record_stripe_api_call(operation, "error", time.time() - start_time)
            raise self._handle_stripe_error(operation, e) from e
        metrics.record_stripe_api_call(operation, "ok", time.time() - start_time)
        return result

    @stripe_retry
    async def create_and_confirm_charge(
        self,
        amount_cents: int,
        currency: str,
        customer_id: str,
        payment_method_id: str,
        idempotency_key: str,
        metadata: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> ChargeResult:
        """
        Create and confirm an off-session PaymentIntent.

        The candidate is not present, so the intent is confirmed immediately
        without any customer interaction. Declines (including
        authentication_required) surface as a PERMANENT StripeError.

        Args:
            amount_cents: Amount in minor units
            currency: Currency code (e.g. 'usd')
            customer_id: Stripe customer id
            payment_method_id: Stored payment method id
            idempotency_key: Key preventing duplicate charges on retry
            metadata: Optional metadata
            description: Optional statement description

        Returns:
            ChargeResult: Intent status and id
        """
        logger.info(
            "creating_off_session_charge",
            amount_cents=amount_cents,
            currency=currency,
            customer_id=customer_id,
            idempotency_key=idempotency_key,
        )

        def _create() -> stripe.PaymentIntent:
            kwargs: Dict[str, Any] = {
                "amount": amount_cents,
                "currency": currency.lower(),
                "customer": customer_id,
                "payment_method": payment_method_id,
                "confirm": True,
                "off_session": True,
                "metadata": metadata or {},
                "idempotency_key": idempotency_key,
            }
            if description:
                kwargs["description"] = description
            return stripe.PaymentIntent.create(**kwargs)

        payment_intent = await self._call("create_and_confirm_charge", _create)

        logger.info(
            "off_session_charge_created",
            payment_intent_id=payment_intent.id,
            status=payment_intent.status,
        )
        return ChargeResult(status=payment_intent.status, charge_ref=payment_intent.id)

    @stripe_retry
    async def retrieve_payment_method(self, payment_method_id: str) -> PaymentMethodInfo:
        """Retrieve a payment method with its card brand, last4 and owner."""
        logger.info("retrieving_payment_method", payment_method_id=payment_method_id)

        payment_method = await self._call(
            "retrieve_payment_method",
            lambda: stripe.PaymentMethod.retrieve(payment_method_id),
        )

        card = getattr(payment_method, "card", None)
        customer = getattr(payment_method, "customer", None)
        if customer is not None and not isinstance(customer, str):
            customer = getattr(customer, "id", None)

        return PaymentMethodInfo(
            id=payment_method.id,
            brand=getattr(card, "brand", None) if card else None,
            last4=getattr(card, "last4", None) if card else None,
            customer_id=customer,
        )

    async def attach_payment_method(self, payment_method_id: str, customer_id: str) -> None:
        """Attach a payment method to a customer."""
        logger.info(
            "attaching_payment_method",
            payment_method_id=payment_method_id,
            customer_id=customer_id,
        )
        await self._call(
            "attach_payment_method",
            lambda: stripe.PaymentMethod.attach(payment_method_id, customer=customer_id),
        )

    async def detach_payment_method(self, payment_method_id: str) -> None:
        """Detach a payment method from its customer."""
        logger.info("detaching_payment_method", payment_method_id=payment_method_id)
        await self._call(
            "detach_payment_method",
            lambda: stripe.PaymentMethod.detach(payment_method_id),
        )

    async def set_default_payment_method(
        self, customer_id: str, payment_method_id: str
    ) -> None:
        """Make a payment method the customer's default for off-session charges."""
        logger.info(
            "setting_default_payment_method",
            customer_id=customer_id,
            payment_method_id=payment_method_id,
        )
        await self._call(
            "set_default_payment_method",
            lambda: stripe.Customer.modify(
                customer_id,
                invoice_settings={"default_payment_method": payment_method_id},
            ),
        )

    async def clear_default_payment_method(self, customer_id: str) -> None:
        """Unset the customer's default payment method."""
        logger.info("clearing_default_payment_method", customer_id=customer_id)
        await self._call(
            "clear_default_payment_method",
            lambda: stripe.Customer.modify(
                customer_id, invoice_settings={"default_payment_method": ""}
            ),
        )

    async def create_customer(
        self, email: Optional[str], metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        """Create a Stripe customer and return its id."""
        logger.info("creating_customer", has_email=bool(email))

        def _create() -> stripe.Customer:
            kwargs: Dict[str, Any] = {"metadata": metadata or {}}
            if email:
                kwargs["email"] = email
            return stripe.Customer.create(**kwargs)

        customer = await self._call("create_customer", _create)
        return customer.id

    async def create_setup_intent(self, customer_id: str) -> str:
        """Create an off-session card SetupIntent and return its client secret."""
        logger.info("creating_setup_intent", customer_id=customer_id)

        setup_intent = await self._call(
            "create_setup_intent",
            lambda: stripe.SetupIntent.create(
                customer=customer_id,
                payment_method_types=["card"],
                usage="off_session",
            ),
        )
        if not setup_intent.client_secret:
            raise StripeError(
                "Stripe did not return a client_secret for the SetupIntent.",
                StripeErrorType.PERMANENT,
            )
        return setup_intent.client_secret

