"""
Payment profile flows: card vaulting, card removal, deactivation and the
public queue projection.

These fill in the customer and payment method references that the charge
loop reads. Customers are created once per candidate and reused.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog

from crown_settlement.core.domain import Candidate, QueueEntry
from crown_settlement.core.resolution import payment_method_ref, to_millis
from crown_settlement.database.store import CandidateStore
from crown_settlement.integrations.gateway import PaymentGateway
from crown_settlement.integrations.stripe_client import StripeError

logger = structlog.get_logger(__name__)

CUSTOMER_SOURCE = "crown-settlement"

CLEARED_PAYMENT_FIELDS: Dict[str, Any] = {
    "stripe_default_payment_method_id": None,
    "default_payment_method_id": None,
    "card_brand": None,
    "card_last4": None,
}


def price_joined_at(candidate: Candidate) -> Optional[datetime]:
    """When the candidate last changed their price, as an aware datetime."""
    if candidate.bid_updated_at is None:
        return None
    return datetime.fromtimestamp(to_millis(candidate.bid_updated_at) / 1000, tz=timezone.utc)


class PaymentProfileError(Exception):
    """Profile flow failure carrying the HTTP status to report."""

    def __init__(self, message: str, status_code: int, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class PaymentProfileService:
    """Glue between the payment gateway and candidate payment fields."""

    def __init__(self, store: CandidateStore, gateway: PaymentGateway):
        self.store = store
        self.gateway = gateway

    async def create_setup_intent(
        self, candidate_key: str, email: Optional[str] = None
    ) -> Dict[str, str]:
        """
        Start card vaulting for a candidate.

        Reuses the candidate's customer or creates one and stores it.

        Returns:
            Dict with client_secret and customer_id
        """
        candidate = await self.store.get_candidate(candidate_key)
        customer_id = candidate.stripe_customer_id if candidate else None

        if not customer_id:
            customer_id = await self.gateway.create_customer(
                email or (candidate.email if candidate else None),
                metadata={"source": CUSTOMER_SOURCE, "uid": candidate_key},
            )
            await self.store.update_candidate(
                candidate_key, {"stripe_customer_id": customer_id}
            )
            logger.info("stripe_customer_created", candidate_key=candidate_key, customer_id=customer_id)

        client_secret = await self.gateway.create_setup_intent(customer_id)
        return {"client_secret": client_secret, "customer_id": customer_id}

    async def attach_payment_method(
        self,
        customer_id: str,
        payment_method_id: str,
        candidate_key: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Attach a payment method to customer_id and make it the default.

        Raises:
            PaymentProfileError: 403 if customer_id is not the candidate's,
                409 if the method belongs to another customer
        """
        if candidate_key is not None:
            candidate = await self.store.get_candidate(candidate_key)
            if candidate is None or candidate.stripe_customer_id != customer_id:
                raise PaymentProfileError("Customer does not belong to this user", 403)

        payment_method = await self.gateway.retrieve_payment_method(payment_method_id)
        owner = payment_method.customer_id

        if owner and owner != customer_id:
            raise PaymentProfileError(
                "This payment method is already attached to a different customer.",
                409,
                details=f"payment_method.customer={owner} does not match customer_id={customer_id}",
            )

        if not owner:
            await self.gateway.attach_payment_method(payment_method_id, customer_id)

        await self.gateway.set_default_payment_method(customer_id, payment_method_id)
        logger.info(
            "payment_method_attached",
            customer_id=customer_id,
            payment_method_id=payment_method_id,
        )
        return {"customer_id": customer_id, "payment_method_id": payment_method_id}

    async def set_default_payment_method(
        self, candidate_key: str, payment_method_id: str
    ) -> Dict[str, Any]:
        """Record the payment method on the candidate and mark them active."""
        candidate = await self.store.get_candidate(candidate_key)
        if candidate is None:
            raise PaymentProfileError("User not found", 404)

        payment_method = await self.gateway.retrieve_payment_method(payment_method_id)

        if candidate.stripe_customer_id:
            await self.gateway.set_default_payment_method(
                candidate.stripe_customer_id, payment_method_id
            )

        await self.store.update_candidate(
            candidate_key,
            {
                "is_active": True,
                "stripe_default_payment_method_id": payment_method_id,
                "default_payment_method_id": payment_method_id,
                "card_brand": payment_method.brand,
                "card_last4": payment_method.last4,
            },
        )
        await self.sync_queue_entry(candidate_key)
        logger.info(
            "default_payment_method_set",
            candidate_key=candidate_key,
            payment_method_id=payment_method_id,
        )
        return {"ok": True, "card_brand": payment_method.brand, "card_last4": payment_method.last4}

    async def deactivate(self, candidate_key: str) -> None:
        """
        Take a candidate out of the running.

        Stripe cleanup is best effort; the candidate is always marked
        inactive with its card fields cleared.
        """
        candidate = await self.store.get_candidate(candidate_key)
        if candidate is None:
            raise PaymentProfileError("User not found", 404)

        if candidate.stripe_customer_id:
            try:
                await self.gateway.clear_default_payment_method(candidate.stripe_customer_id)
            except StripeError as e:
                logger.warning(
                    "clear_default_payment_method_failed",
                    candidate_key=candidate_key,
                    error=str(e),
                )

        method_id = payment_method_ref(candidate)
        if method_id:
            try:
                await self.gateway.detach_payment_method(method_id)
            except StripeError as e:
                logger.warning(
                    "detach_payment_method_failed",
                    candidate_key=candidate_key,
                    payment_method_id=method_id,
                    error=str(e),
                )

        await self.store.update_candidate(
            candidate_key,
            {"is_active": False, **CLEARED_PAYMENT_FIELDS},
        )
        await self.sync_queue_entry(candidate_key)
        logger.info("candidate_deactivated", candidate_key=candidate_key)

    async def delete_payment_method(self, candidate_key: str, payment_method_id: str) -> None:
        """
        Detach a stored card from Stripe.

        Removing the candidate's current default also clears the stored
        method and card fields and takes them out of the running.

        Raises:
            PaymentProfileError: 404 for an unknown candidate, 403 if the
                method belongs to someone else's customer
        """
        candidate = await self.store.get_candidate(candidate_key)
        if candidate is None:
            raise PaymentProfileError("User not found", 404)

        payment_method = await self.gateway.retrieve_payment_method(payment_method_id)
        owner = payment_method.customer_id
        if owner and owner != candidate.stripe_customer_id:
            raise PaymentProfileError("Payment method does not belong to this user", 403)

        await self.gateway.detach_payment_method(payment_method_id)

        if payment_method_ref(candidate) == payment_method_id:
            await self.store.update_candidate(
                candidate_key, {"is_active": False, **CLEARED_PAYMENT_FIELDS}
            )
            await self.sync_queue_entry(candidate_key)

        logger.info(
            "payment_method_deleted",
            candidate_key=candidate_key,
            payment_method_id=payment_method_id,
        )

    async def sync_queue_entry(self, candidate_key: str) -> QueueEntry:
        """Rebuild the candidate's public queue entry from their private record."""
        candidate = await self.store.get_candidate(candidate_key)
        if candidate is None:
            raise PaymentProfileError("User not found", 404)

        entry = QueueEntry(
            key=candidate_key,
            crown_price=Decimal(candidate.bid_amount or 0),
            is_active=candidate.is_active,
            price_joined_at=price_joined_at(candidate),
        )
        await self.store.upsert_queue_entry(entry)
        logger.debug("queue_entry_synced", candidate_key=candidate_key, crown_price=str(entry.crown_price))
        return entry

    async def queue_position(self, candidate_key: str) -> Dict[str, Any]:
        """
        1-based position within the candidate's price tier.

        The tier is read from the public projection only. Position and size
        are None when the candidate has no positive price.
        """
        candidate = await self.store.get_candidate(candidate_key)
        if candidate is None:
            raise PaymentProfileError("User not found", 404)

        crown_price = Decimal(candidate.bid_amount or 0)
        if crown_price <= 0:
            return {"crown_price": crown_price, "position": None, "tier_size": None}

        tier = await self.queue_tier(crown_price)
        keys = [entry.key for entry in tier]
        position = keys.index(candidate_key) + 1 if candidate_key in keys else None
        return {"crown_price": crown_price, "position": position, "tier_size": len(tier)}

    async def queue_tier(self, crown_price: Decimal) -> List[QueueEntry]:
        """Active entries at crown_price, earliest joiner first."""
        tier = await self.store.list_queue_tier(crown_price)
        return sorted(
            tier,
            key=lambda e: (
                to_millis(e.price_joined_at) if e.price_joined_at is not None else 0,
                e.key,
            ),
        )
