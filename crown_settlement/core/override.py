"""
Manual crown assignment by an operator.

Same validation as the nightly charge loop, but any problem is an
immediate rejection because there is no next candidate to fall back to.
Authorization happens in the API layer before this is called.
"""
from typing import Any, Optional

import structlog

from crown_settlement.config import Settings, get_settings
from crown_settlement.core.domain import (
    AssignmentResult,
    EventType,
    Provenance,
    SettlementEvent,
)
from crown_settlement.core.idempotency import MANUAL_NAMESPACE, generate_key
from crown_settlement.core.lock import Clock
from crown_settlement.core.publisher import OutcomePublisher
from crown_settlement.core.resolution import date_key_for, manual_amount_cents
from crown_settlement.database.store import CandidateStore, utcnow
from crown_settlement.integrations.gateway import PaymentGateway
from crown_settlement.integrations.stripe_client import StripeError, StripeErrorType
from crown_settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class AssignmentError(Exception):
    """Manual assignment rejected or charge failed."""

    def __init__(self, reason: str, status_code: int, **details: Any):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code
        self.details = details


class ManualOverride:
    """Charges one chosen candidate and crowns them on success."""

    def __init__(
        self,
        store: CandidateStore,
        gateway: PaymentGateway,
        settings: Optional[Settings] = None,
        now: Clock = utcnow,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.gateway = gateway
        self.now = now
        self.publisher = OutcomePublisher(store, now)

    async def _record_failure(
        self,
        candidate_key: str,
        amount_cents: int,
        date_key: str,
        reason: str,
        gateway_status: Optional[str] = None,
        charge_ref: Optional[str] = None,
    ) -> None:
        metrics.record_charge_attempt(Provenance.MANUAL.value, "failed", amount_cents)
        await self.publisher.record_event(
            SettlementEvent(
                event_type=EventType.FAIL,
                candidate_key=candidate_key,
                charge_cents=amount_cents,
                date_key=date_key,
                provenance=Provenance.MANUAL,
                charge_ref=charge_ref,
                gateway_status=gateway_status,
                failure_reason=reason,
            )
        )

    async def assign_now(
        self,
        candidate_key: str,
        amount_override: Optional[int] = None,
        operator: Optional[str] = None,
    ) -> AssignmentResult:
        """
        Charge candidate_key once and crown them if the charge succeeds.

        Args:
            candidate_key: Candidate to crown
            amount_override: Amount in minor units, replacing the stored bid
            operator: Operator identity, for the audit log

        Returns:
            AssignmentResult: Winner, amount and charge reference

        Raises:
            AssignmentError: 404 unknown candidate, 400 invalid input,
                402 declined, 502 gateway unavailable
        """
        date_key = date_key_for(self.now(), self.settings.settlement_timezone)
        log = logger.bind(candidate_key=candidate_key, date_key=date_key, operator=operator)

        candidate = await self.store.get_candidate(candidate_key)
        if candidate is None:
            raise AssignmentError("Target user not found", 404)

        customer_id = candidate.stripe_customer_id
        payment_method_id = candidate.stripe_default_payment_method_id
        if not payment_method_id and candidate.default_payment_method_id:
            # Promote the legacy field so later reads find it in the current one
            payment_method_id = candidate.default_payment_method_id
            await self.store.update_candidate(
                candidate_key, {"stripe_default_payment_method_id": payment_method_id}
            )
            log.info("legacy_payment_method_promoted", payment_method_id=payment_method_id)

        if not customer_id or not payment_method_id:
            raise AssignmentError(
                "User has no Stripe customer or default payment method",
                400,
                has_customer=bool(customer_id),
                has_payment_method=bool(payment_method_id),
            )

        amount_cents = manual_amount_cents(candidate, amount_override)
        if amount_cents is None or amount_cents < self.settings.min_charge_cents:
            raise AssignmentError(
                f"Invalid amount: must be at least {self.settings.min_charge_cents} cents",
                400,
                amount_cents=amount_cents,
            )

        idempotency_key = generate_key(MANUAL_NAMESPACE, date_key, candidate_key, amount_cents)
        log.info("manual_assignment_charging", amount_cents=amount_cents)

        try:
            result = await self.gateway.create_and_confirm_charge(
                amount_cents=amount_cents,
                currency=self.settings.settlement_currency,
                customer_id=customer_id,
                payment_method_id=payment_method_id,
                idempotency_key=idempotency_key,
                metadata={
                    "uid": candidate_key,
                    "date_key": date_key,
                    "kind": "crown_admin_assign",
                    "operator": operator or "",
                },
                description=f"Crown (manual) for {date_key}",
            )
        except StripeError as e:
            await self._record_failure(candidate_key, amount_cents, date_key, str(e))
            status_code = 402 if e.error_type is StripeErrorType.PERMANENT else 502
            log.warning("manual_assignment_charge_failed", error=str(e), status_code=status_code)
            raise AssignmentError(str(e), status_code, code=e.code) from e
        except Exception as e:
            reason = str(e) or type(e).__name__
            await self._record_failure(candidate_key, amount_cents, date_key, reason)
            log.error("manual_assignment_gateway_error", error=reason, error_type=type(e).__name__)
            raise AssignmentError("Payment gateway error", 502, details=reason) from e

        if not result.succeeded:
            await self._record_failure(
                candidate_key,
                amount_cents,
                date_key,
                f"status: {result.status}",
                gateway_status=result.status,
                charge_ref=result.charge_ref,
            )
            log.warning("manual_assignment_not_succeeded", status=result.status)
            raise AssignmentError(
                "Payment did not succeed",
                402,
                status=result.status,
                payment_intent_id=result.charge_ref,
            )

        await self.publisher.publish_win(
            candidate_key, amount_cents, result.charge_ref, date_key, Provenance.MANUAL
        )
        metrics.record_charge_attempt(Provenance.MANUAL.value, "succeeded", amount_cents)
        await self.publisher.record_event(
            SettlementEvent(
                event_type=EventType.WIN,
                candidate_key=candidate_key,
                charge_cents=amount_cents,
                date_key=date_key,
                provenance=Provenance.MANUAL,
                charge_ref=result.charge_ref,
                gateway_status=result.status,
            )
        )
        log.info("manual_assignment_succeeded", charge_ref=result.charge_ref)

        return AssignmentResult(
            uid=candidate_key,
            amount_cents=amount_cents,
            payment_intent_id=result.charge_ref,
            date_key=date_key,
        )
