"""External integrations for crown settlement."""
from .gateway import PaymentGateway, PaymentMethodInfo
from .stripe_client import StripeClient, StripeError, StripeErrorType

__all__ = [
    "PaymentGateway",
    "PaymentMethodInfo",
    "StripeClient",
    "StripeError",
    "StripeErrorType",
]
