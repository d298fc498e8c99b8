"""
In-memory CandidateStore.

Used by the test suite and for local dry runs. An asyncio lock around the
crown status gives the same all-or-nothing read-modify-write semantics as
the SQL store within one process.
"""
import asyncio
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, TypeVar

from crown_settlement.core.domain import Candidate, CrownStatus, QueueEntry, SettlementEvent
from crown_settlement.database.store import (
    CrownTransaction,
    utcnow,
    validate_candidate_fields,
    validate_crown_patch,
)

T = TypeVar("T")


class InMemoryCandidateStore:
    """Dictionary-backed store holding candidates, crown status and events."""

    def __init__(
        self,
        candidates: Optional[Iterable[Candidate]] = None,
        crown_status: Optional[CrownStatus] = None,
    ):
        self.candidates: Dict[str, Candidate] = {c.key: c for c in candidates or ()}
        self.crown_status = crown_status or CrownStatus()
        self.events: List[SettlementEvent] = []
        self.queue_entries: Dict[str, QueueEntry] = {}
        self._crown_lock = asyncio.Lock()

    def add_candidate(self, candidate: Candidate) -> None:
        self.candidates[candidate.key] = candidate

    def _merge(self, patch: Dict[str, Any]) -> None:
        validate_crown_patch(patch)
        self.crown_status = self.crown_status.model_copy(
            update={**patch, "updated_at": utcnow()}
        )

    async def transact_crown_status(self, fn: CrownTransaction[T]) -> T:
        async with self._crown_lock:
            patch, result = fn(self.crown_status.model_copy())
            if patch:
                self._merge(patch)
            return result

    async def get_crown_status(self) -> CrownStatus:
        return self.crown_status.model_copy()

    async def merge_crown_status(self, patch: Dict[str, Any]) -> None:
        async with self._crown_lock:
            self._merge(patch)

    async def top_bidders(self, limit: int) -> List[Candidate]:
        bidders = [
            c
            for c in self.candidates.values()
            if c.bid_amount is not None and Decimal(c.bid_amount) > 0
        ]
        bidders.sort(key=lambda c: Decimal(c.bid_amount), reverse=True)
        return bidders[:limit]

    async def get_candidate(self, key: str) -> Optional[Candidate]:
        return self.candidates.get(key)

    async def update_candidate(self, key: str, fields: Dict[str, Any]) -> None:
        validate_candidate_fields(fields)
        current = self.candidates.get(key)
        stamped = {**fields, "updated_at": utcnow()}
        if current is None:
            self.candidates[key] = Candidate(key=key, created_at=utcnow(), **stamped)
        else:
            self.candidates[key] = current.model_copy(update=stamped)

    async def list_candidates(self) -> List[Candidate]:
        return [self.candidates[key] for key in sorted(self.candidates)]

    async def append_event(self, event: SettlementEvent) -> None:
        if event.created_at is None:
            event = event.model_copy(update={"created_at": utcnow()})
        self.events.append(event)

    async def list_events(
        self, limit: int = 100, date_key: Optional[str] = None
    ) -> List[SettlementEvent]:
        events = [e for e in self.events if date_key is None or e.date_key == date_key]
        return list(reversed(events))[:limit]

    async def upsert_queue_entry(self, entry: QueueEntry) -> None:
        self.queue_entries[entry.key] = entry.model_copy(
            update={"updated_at": entry.updated_at or utcnow()}
        )

    async def list_queue_tier(self, crown_price: Decimal) -> List[QueueEntry]:
        return [
            e
            for e in self.queue_entries.values()
            if e.is_active and Decimal(e.crown_price) == Decimal(crown_price)
        ]
