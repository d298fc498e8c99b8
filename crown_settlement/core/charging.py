"""
Charge loop for the nightly settlement.

Candidates are tried one at a time in ranked order. Each gets exactly one
charge attempt per run; the first confirmed charge wins and ends the loop.
"""
from typing import Any, Dict, Optional, Sequence

import structlog

from crown_settlement.config import Settings, get_settings
from crown_settlement.core.domain import (
    Candidate,
    ChargeOutcome,
    EventType,
    Provenance,
    SettlementEvent,
)
from crown_settlement.core.idempotency import NIGHTLY_NAMESPACE, generate_key
from crown_settlement.core.publisher import OutcomePublisher
from crown_settlement.core.resolution import nightly_amount_cents, payment_refs
from crown_settlement.integrations.gateway import PaymentGateway
from crown_settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

INVALID_AMOUNT = "invalid amount"
MISSING_PAYMENT_METHOD = "missing payment method"


class ChargeLoop:
    """Charges ranked candidates until one payment succeeds."""

    def __init__(
        self,
        gateway: PaymentGateway,
        publisher: OutcomePublisher,
        settings: Optional[Settings] = None,
    ):
        self.gateway = gateway
        self.publisher = publisher
        self.settings = settings or get_settings()

    async def _fail(
        self,
        candidate: Candidate,
        date_key: str,
        reason: str,
        amount_cents: int = 0,
        gateway_status: Optional[str] = None,
        charge_ref: Optional[str] = None,
    ) -> None:
        logger.warning(
            "candidate_charge_failed",
            candidate_key=candidate.key,
            date_key=date_key,
            reason=reason,
        )
        metrics.record_charge_attempt(Provenance.NIGHTLY.value, "failed", amount_cents)
        await self.publisher.record_event(
            SettlementEvent(
                event_type=EventType.FAIL,
                candidate_key=candidate.key,
                charge_cents=amount_cents,
                date_key=date_key,
                provenance=Provenance.NIGHTLY,
                charge_ref=charge_ref,
                gateway_status=gateway_status,
                failure_reason=reason,
            )
        )

    async def settle(self, ordered: Sequence[Candidate], date_key: str) -> ChargeOutcome:
        """
        Try each candidate in order.

        Returns:
            ChargeOutcome with the winner, or with no winner when every
            candidate failed.
        """
        attempts = 0
        for candidate in ordered:
            attempts += 1

            amount_cents = nightly_amount_cents(candidate)
            if amount_cents is None or amount_cents < self.settings.min_charge_cents:
                await self._fail(candidate, date_key, INVALID_AMOUNT)
                continue

            refs = payment_refs(candidate)
            if refs is None:
                await self._fail(candidate, date_key, MISSING_PAYMENT_METHOD, amount_cents)
                continue
            customer_id, payment_method_id = refs

            idempotency_key = generate_key(
                NIGHTLY_NAMESPACE, date_key, candidate.key, amount_cents
            )
            metadata: Dict[str, Any] = {
                "uid": candidate.key,
                "date_key": date_key,
                "kind": "crown_nightly",
            }

            try:
                result = await self.gateway.create_and_confirm_charge(
                    amount_cents=amount_cents,
                    currency=self.settings.settlement_currency,
                    customer_id=customer_id,
                    payment_method_id=payment_method_id,
                    idempotency_key=idempotency_key,
                    metadata=metadata,
                    description=f"Crown for {date_key}",
                )
            except Exception as e:
                # Any gateway failure only disqualifies this candidate
                await self._fail(candidate, date_key, str(e) or type(e).__name__, amount_cents)
                continue

            if not result.succeeded:
                await self._fail(
                    candidate,
                    date_key,
                    f"status: {result.status}",
                    amount_cents,
                    gateway_status=result.status,
                    charge_ref=result.charge_ref,
                )
                continue

            await self.publisher.publish_win(
                candidate.key,
                amount_cents,
                result.charge_ref,
                date_key,
                Provenance.NIGHTLY,
            )
            metrics.record_charge_attempt(Provenance.NIGHTLY.value, "succeeded", amount_cents)
            await self.publisher.record_event(
                SettlementEvent(
                    event_type=EventType.WIN,
                    candidate_key=candidate.key,
                    charge_cents=amount_cents,
                    date_key=date_key,
                    provenance=Provenance.NIGHTLY,
                    charge_ref=result.charge_ref,
                    gateway_status=result.status,
                )
            )
            return ChargeOutcome(
                winner_key=candidate.key,
                amount_cents=amount_cents,
                charge_ref=result.charge_ref,
                attempts=attempts,
            )

        return ChargeOutcome(attempts=attempts)
