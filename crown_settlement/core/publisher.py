"""Writes settlement results to the crown status record and the event log."""
from typing import Any, Dict, Optional

import structlog

from crown_settlement.core.domain import (
    Candidate,
    NoWinnerReason,
    Provenance,
    SettlementEvent,
)
from crown_settlement.core.lock import Clock
from crown_settlement.database.store import CandidateStore, utcnow

logger = structlog.get_logger(__name__)


def champion_snapshot(candidate: Optional[Candidate]) -> Dict[str, Any]:
    """Public display fields copied onto crown status at win time."""
    if candidate is None:
        return {"champion_name": None, "champion_bio": None, "champion_photo_url": None}
    return {
        "champion_name": candidate.full_name or candidate.display_name,
        "champion_bio": candidate.bio,
        "champion_photo_url": candidate.photo_url,
    }


class OutcomePublisher:
    """
    Publishes winners and no-winner dispositions.

    The crown status merge is the durable record of a win. The event log is
    an audit trail and never blocks or fails a settlement.
    """

    def __init__(self, store: CandidateStore, now: Clock = utcnow):
        self.store = store
        self.now = now

    async def publish_win(
        self,
        candidate_key: str,
        amount_cents: int,
        charge_ref: str,
        date_key: str,
        provenance: Provenance,
    ) -> None:
        """Crown candidate_key for date_key. Call only after a confirmed charge."""
        # Read the profile fresh so the snapshot reflects the current profile
        candidate = await self.store.get_candidate(candidate_key)

        patch = {
            "active_winner_key": candidate_key,
            "active_charge_cents": amount_cents,
            "active_charge_ref": charge_ref,
            "settlement_date_key": date_key,
            "crowned_since": self.now(),
            "assigned_by": provenance,
            **champion_snapshot(candidate),
        }
        await self.store.merge_crown_status(patch)

        logger.info(
            "crown_published",
            winner_key=candidate_key,
            amount_cents=amount_cents,
            charge_ref=charge_ref,
            date_key=date_key,
            provenance=provenance.value,
        )

    async def publish_no_winner(self, date_key: str, reason: NoWinnerReason) -> None:
        """Record the day's disposition; the current titleholder stays crowned."""
        await self.store.merge_crown_status(
            {"last_attempt_date_key": date_key, "last_attempt_outcome": reason}
        )
        logger.info("no_winner_published", date_key=date_key, reason=reason.value)

    async def record_event(self, event: SettlementEvent) -> None:
        """Append to the event log, logging instead of raising on failure."""
        if event.created_at is None:
            event = event.model_copy(update={"created_at": self.now()})
        try:
            await self.store.append_event(event)
        except Exception as e:
            logger.error(
                "settlement_event_append_failed",
                event_type=event.event_type.value,
                candidate_key=event.candidate_key,
                date_key=event.date_key,
                error=str(e),
            )
