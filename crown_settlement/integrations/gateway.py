"""Payment gateway contract consumed by settlement and payment profile flows."""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from crown_settlement.core.domain import ChargeResult


@dataclass(frozen=True)
class PaymentMethodInfo:
    """Card details of a stored payment method."""

    id: str
    brand: Optional[str]
    last4: Optional[str]
    customer_id: Optional[str]


class PaymentGateway(Protocol):
    """
    Interface for the payment processor.

    Implementations raise ``StripeError`` for every gateway-level failure
    (declines, authentication required, network errors).
    """

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
        """Create and immediately confirm an off-session charge."""
        ...

    async def retrieve_payment_method(self, payment_method_id: str) -> PaymentMethodInfo:
        ...

    async def attach_payment_method(self, payment_method_id: str, customer_id: str) -> None:
        ...

    async def detach_payment_method(self, payment_method_id: str) -> None:
        ...

    async def set_default_payment_method(
        self, customer_id: str, payment_method_id: str
    ) -> None:
        ...

    async def clear_default_payment_method(self, customer_id: str) -> None:
        ...

    async def create_customer(
        self, email: Optional[str], metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        ...

    async def create_setup_intent(self, customer_id: str) -> str:
        """Create an off-session card SetupIntent and return its client secret."""
        ...
