"""
Settlement lock stored on the crown status record.

At most one settlement runs per calendar day. The lock fields live on the
crown status singleton and are written inside the store's read-modify-write
transaction, so two runs racing for the same day serialize on it.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

import structlog

from crown_settlement.config import Settings, get_settings
from crown_settlement.core.domain import CrownStatus, LockState
from crown_settlement.database.store import CandidateStore, utcnow
from crown_settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

CLEARED_LOCK = {"lock_holder_since": None, "lock_holder_date_key": None}


class LockManager:
    """Acquires and releases the daily settlement lock."""

    def __init__(
        self,
        store: CandidateStore,
        settings: Optional[Settings] = None,
        now: Clock = utcnow,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.now = now

    @property
    def stale_after(self) -> timedelta:
        return timedelta(seconds=self.settings.settlement_lock_stale_seconds)

    async def acquire_or_skip(self, date_key: str) -> LockState:
        """
        Try to take the lock for date_key.

        Returns:
            LockState.ALREADY_SETTLED if a winner was already settled for the day,
            LockState.ALREADY_SETTLING if a fresh lock is held,
            LockState.ACQUIRED after writing both lock fields.
        """
        now = self.now()

        def decide(status: CrownStatus) -> Tuple[Optional[Dict], LockState]:
            if status.settlement_date_key == date_key:
                return None, LockState.ALREADY_SETTLED

            if status.lock_holder_since is not None:
                age = now - status.lock_holder_since
                if age < self.stale_after:
                    return None, LockState.ALREADY_SETTLING
                logger.warning(
                    "stale_settlement_lock_reclaimed",
                    lock_date_key=status.lock_holder_date_key,
                    lock_age_seconds=age.total_seconds(),
                )

            return {"lock_holder_since": now, "lock_holder_date_key": date_key}, LockState.ACQUIRED

        state = await self.store.transact_crown_status(decide)

        metrics.record_lock_result(state.value)
        logger.info("settlement_lock_result", date_key=date_key, state=state.value)
        return state

    async def release(self) -> None:
        """Clear both lock fields."""
        await self.store.merge_crown_status(dict(CLEARED_LOCK))
        logger.info("settlement_lock_released")

    @asynccontextmanager
    async def hold(self, date_key: str) -> AsyncIterator[LockState]:
        """
        Acquire for the duration of the block.

        Yields the lock state. The lock is released on every exit path when
        it was acquired; a failing release is logged so it never replaces the
        error raised inside the block.
        """
        state = await self.acquire_or_skip(date_key)
        try:
            yield state
        finally:
            if state is LockState.ACQUIRED:
                try:
                    await self.release()
                except Exception as e:
                    logger.error(
                        "settlement_lock_release_failed",
                        date_key=date_key,
                        error=str(e),
                        exc_info=True,
                    )
