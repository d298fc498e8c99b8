"""
Nightly crown settlement.

One run:
1. Compute today's date key in the settlement timezone
2. Take the daily lock (or skip when settled / settling)
3. Load the top bidders and rank the active ones
4. Charge candidates in order until one payment succeeds
5. Publish the winner, or the no-winner disposition
6. Release the lock on every exit path
"""
import time
from typing import Optional

import structlog

from crown_settlement.config import Settings, get_settings
from crown_settlement.core.charging import ChargeLoop
from crown_settlement.core.domain import (
    EventType,
    LockState,
    NoWinnerReason,
    Provenance,
    SettlementEvent,
    SettlementOutcome,
    SettlementStatus,
)
from crown_settlement.core.lock import Clock, LockManager
from crown_settlement.core.publisher import OutcomePublisher
from crown_settlement.core.ranking import rank
from crown_settlement.core.resolution import date_key_for
from crown_settlement.database.store import CandidateStore, utcnow
from crown_settlement.integrations.gateway import PaymentGateway
from crown_settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# Candidate keys used on run-level FAIL events
NO_CANDIDATE_KEY = "none"
ALL_CANDIDATES_KEY = "all"

_SKIPPED = {
    LockState.ALREADY_SETTLED: SettlementStatus.ALREADY_SETTLED,
    LockState.ALREADY_SETTLING: SettlementStatus.ALREADY_SETTLING,
}


class SettlementEngine:
    """
    Orchestrates one settlement run.

    The store and gateway are passed in so the engine can run against the
    in-memory store and a scripted gateway.
    """

    def __init__(
        self,
        store: CandidateStore,
        gateway: PaymentGateway,
        settings: Optional[Settings] = None,
        now: Clock = utcnow,
    ):
        """
        Initialize settlement engine.

        Args:
            store: Candidate / crown status store
            gateway: Payment gateway used for charges
            settings: Optional settings override
            now: Clock returning an aware datetime
        """
        self.settings = settings or get_settings()
        self.store = store
        self.now = now
        self.lock = LockManager(store, self.settings, now)
        self.publisher = OutcomePublisher(store, now)
        self.charge_loop = ChargeLoop(gateway, self.publisher, self.settings)

    def today(self) -> str:
        return date_key_for(self.now(), self.settings.settlement_timezone)

    async def _no_winner(
        self, date_key: str, reason: NoWinnerReason, candidate_key: str
    ) -> SettlementOutcome:
        await self.publisher.publish_no_winner(date_key, reason)
        await self.publisher.record_event(
            SettlementEvent(
                event_type=EventType.FAIL,
                candidate_key=candidate_key,
                date_key=date_key,
                provenance=Provenance.NIGHTLY,
                failure_reason=reason.value,
            )
        )
        return SettlementOutcome(status=SettlementStatus(reason.value), date_key=date_key)

    async def _settle_locked(self, date_key: str) -> SettlementOutcome:
        pool = await self.store.top_bidders(self.settings.candidate_pool_limit)
        if not pool:
            return await self._no_winner(
                date_key, NoWinnerReason.NO_CANDIDATES, NO_CANDIDATE_KEY
            )

        ordered = rank(pool)
        logger.info(
            "settlement_candidates_ranked",
            date_key=date_key,
            pool_size=len(pool),
            eligible=len(ordered),
        )
        if not ordered:
            return await self._no_winner(
                date_key, NoWinnerReason.NO_ACTIVE_CANDIDATES, NO_CANDIDATE_KEY
            )

        outcome = await self.charge_loop.settle(ordered, date_key)
        if not outcome.won:
            return await self._no_winner(
                date_key, NoWinnerReason.ALL_FAILED, ALL_CANDIDATES_KEY
            )

        return SettlementOutcome(
            status=SettlementStatus.WON,
            date_key=date_key,
            winner_key=outcome.winner_key,
            amount_cents=outcome.amount_cents,
            charge_ref=outcome.charge_ref,
        )

    async def run(self) -> SettlementOutcome:
        """
        Settle today's crown.

        Returns:
            SettlementOutcome describing what happened

        Raises:
            Exception: Store or infrastructure failures, after the lock is released
        """
        start_time = time.time()
        date_key = self.today()
        structlog.contextvars.bind_contextvars(settlement_date_key=date_key)
        logger.info("settlement_run_started", date_key=date_key)

        try:
            async with self.lock.hold(date_key) as state:
                if state is LockState.ACQUIRED:
                    outcome = await self._settle_locked(date_key)
                else:
                    outcome = SettlementOutcome(status=_SKIPPED[state], date_key=date_key)
        except Exception as e:
            metrics.record_settlement_run("error", time.time() - start_time)
            logger.error(
                "settlement_run_failed",
                date_key=date_key,
                error=str(e),
                exc_info=True,
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("settlement_date_key")

        metrics.record_settlement_run(outcome.status.value, time.time() - start_time)
        logger.info("settlement_run_completed", **outcome.to_dict())
        return outcome

    async def force_unlock(self) -> None:
        """Clear the lock regardless of its age (operator recovery)."""
        logger.warning("settlement_lock_force_unlock")
        await self.lock.release()
