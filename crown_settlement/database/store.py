"""
Candidate store: the persistence contract used by settlement.

The engine only needs four primitives: an atomic read-modify-write on the
crown status singleton, a bounded top-bidders query, point reads/writes on
candidates, and appends to the settlement event log. The profile flows also
maintain the public queue projection here.
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, TypeVar

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crown_settlement.core.domain import (
    Candidate,
    CrownStatus,
    EventType,
    NoWinnerReason,
    Provenance,
    QueueEntry,
    SettlementEvent,
)
from crown_settlement.database.models import (
    CROWN_STATUS_ID,
    CrownStatusRecord,
    QueueEntryRecord,
    SettlementEventRecord,
    User,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# fn(current) -> (patch or None, result); runs inside the store transaction
CrownTransaction = Callable[[CrownStatus], Tuple[Optional[Dict[str, Any]], T]]

# Candidate field -> users column, where the names differ
CANDIDATE_COLUMNS: Dict[str, str] = {
    "bid_amount": "crown_price",
    "bid_amount_cents": "crown_price_cents",
    "bid_offer_cents": "crown_offer_cents",
    "bid_updated_at": "crown_price_updated_at",
    "offer_updated_at": "crown_offer_updated_at",
}

WRITABLE_CANDIDATE_FIELDS = frozenset(Candidate.model_fields) - {"key", "created_at", "updated_at"}

CROWN_FIELDS = frozenset(CrownStatus.model_fields)


class CandidateStore(Protocol):
    """Interface for the candidate / crown status / event store."""

    async def transact_crown_status(self, fn: CrownTransaction[T]) -> T:
        """Run fn against the current crown status and apply its patch atomically."""
        ...

    async def get_crown_status(self) -> CrownStatus:
        """Read the crown status singleton."""
        ...

    async def merge_crown_status(self, patch: Dict[str, Any]) -> None:
        """Merge fields into the crown status singleton."""
        ...

    async def top_bidders(self, limit: int) -> List[Candidate]:
        """Candidates with a positive bid, highest first, at most limit."""
        ...

    async def get_candidate(self, key: str) -> Optional[Candidate]:
        """Point read of one candidate."""
        ...

    async def update_candidate(self, key: str, fields: Dict[str, Any]) -> None:
        """Merge fields into a candidate, creating it when absent."""
        ...

    async def list_candidates(self) -> List[Candidate]:
        """All candidates (operator views)."""
        ...

    async def append_event(self, event: SettlementEvent) -> None:
        """Append one settlement event."""
        ...

    async def list_events(
        self, limit: int = 100, date_key: Optional[str] = None
    ) -> List[SettlementEvent]:
        """Most recent settlement events first."""
        ...

    async def upsert_queue_entry(self, entry: QueueEntry) -> None:
        """Write a candidate's public queue projection."""
        ...

    async def list_queue_tier(self, crown_price: Decimal) -> List[QueueEntry]:
        """Active queue entries at exactly crown_price, in no particular order."""
        ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_crown_patch(patch: Dict[str, Any]) -> None:
    unknown = set(patch) - CROWN_FIELDS
    if unknown:
        raise ValueError(f"Unknown crown status fields: {sorted(unknown)}")


def validate_candidate_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - WRITABLE_CANDIDATE_FIELDS
    if unknown:
        raise ValueError(f"Unknown or read-only candidate fields: {sorted(unknown)}")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _candidate_from_row(row: User) -> Candidate:
    return Candidate(
        key=row.uid,
        bid_amount=row.crown_price,
        bid_amount_cents=row.crown_price_cents,
        bid_offer_cents=row.crown_offer_cents,
        bid_updated_at=_aware(row.crown_price_updated_at),
        offer_updated_at=_aware(row.crown_offer_updated_at),
        updated_at=_aware(row.updated_at),
        created_at=_aware(row.created_at),
        is_active=bool(row.is_active),
        stripe_customer_id=row.stripe_customer_id,
        stripe_default_payment_method_id=row.stripe_default_payment_method_id,
        default_payment_method_id=row.default_payment_method_id,
        email=row.email,
        full_name=row.full_name,
        display_name=row.display_name,
        bio=row.bio,
        photo_url=row.photo_url,
        card_brand=row.card_brand,
        card_last4=row.card_last4,
    )


def _crown_from_record(record: CrownStatusRecord) -> CrownStatus:
    return CrownStatus(
        active_winner_key=record.active_winner_key,
        active_charge_cents=record.active_charge_cents,
        active_charge_ref=record.active_charge_ref,
        settlement_date_key=record.settlement_date_key,
        crowned_since=_aware(record.crowned_since),
        assigned_by=Provenance(record.assigned_by) if record.assigned_by else None,
        champion_name=record.champion_name,
        champion_bio=record.champion_bio,
        champion_photo_url=record.champion_photo_url,
        lock_holder_since=_aware(record.lock_holder_since),
        lock_holder_date_key=record.lock_holder_date_key,
        last_attempt_date_key=record.last_attempt_date_key,
        last_attempt_outcome=(
            NoWinnerReason(record.last_attempt_outcome) if record.last_attempt_outcome else None
        ),
        updated_at=_aware(record.updated_at),
    )


def _event_from_record(record: SettlementEventRecord) -> SettlementEvent:
    return SettlementEvent(
        event_type=EventType(record.event_type),
        candidate_key=record.candidate_key,
        charge_cents=record.charge_cents,
        date_key=record.date_key,
        provenance=Provenance(record.provenance),
        charge_ref=record.charge_ref,
        gateway_status=record.gateway_status,
        failure_reason=record.failure_reason,
        created_at=_aware(record.created_at),
    )


class SqlCandidateStore:
    """
    CandidateStore backed by async SQLAlchemy.

    The crown status transaction takes a row lock (SELECT ... FOR UPDATE on
    PostgreSQL) so concurrent lock acquisitions serialize.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    async def _load_crown_for_update(session: AsyncSession) -> CrownStatusRecord:
        stmt = (
            select(CrownStatusRecord)
            .where(CrownStatusRecord.id == CROWN_STATUS_ID)
            .with_for_update()
        )
        record = (await session.execute(stmt)).scalar_one_or_none()
        if record is None:
            record = CrownStatusRecord(id=CROWN_STATUS_ID)
            session.add(record)
            await session.flush()
        return record

    @staticmethod
    def _apply_crown_patch(record: CrownStatusRecord, patch: Dict[str, Any]) -> None:
        validate_crown_patch(patch)
        for field, value in patch.items():
            setattr(record, field, _column_value(value))
        record.updated_at = utcnow()

    async def transact_crown_status(self, fn: CrownTransaction[T]) -> T:
        async with self._session_factory() as session:
            async with session.begin():
                record = await self._load_crown_for_update(session)
                patch, result = fn(_crown_from_record(record))
                if patch:
                    self._apply_crown_patch(record, patch)
        return result

    async def get_crown_status(self) -> CrownStatus:
        async with self._session_factory() as session:
            record = await session.get(CrownStatusRecord, CROWN_STATUS_ID)
            if record is None:
                return CrownStatus()
            return _crown_from_record(record)

    async def merge_crown_status(self, patch: Dict[str, Any]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                record = await self._load_crown_for_update(session)
                self._apply_crown_patch(record, patch)

    async def top_bidders(self, limit: int) -> List[Candidate]:
        stmt = (
            select(User)
            .where(User.crown_price > 0)
            .order_by(User.crown_price.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_candidate_from_row(row) for row in rows]

    async def get_candidate(self, key: str) -> Optional[Candidate]:
        async with self._session_factory() as session:
            row = await session.get(User, key)
            return _candidate_from_row(row) if row is not None else None

    async def update_candidate(self, key: str, fields: Dict[str, Any]) -> None:
        validate_candidate_fields(fields)
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(User, key)
                if row is None:
                    row = User(uid=key, is_active=False)
                    session.add(row)
                for field, value in fields.items():
                    setattr(row, CANDIDATE_COLUMNS.get(field, field), value)
                row.updated_at = utcnow()

    async def list_candidates(self) -> List[Candidate]:
        async with self._session_factory() as session:
            rows = (await session.execute(select(User).order_by(User.uid))).scalars().all()
        return [_candidate_from_row(row) for row in rows]

    async def append_event(self, event: SettlementEvent) -> None:
        record = SettlementEventRecord(
            event_type=event.event_type.value,
            candidate_key=event.candidate_key,
            charge_cents=event.charge_cents,
            date_key=event.date_key,
            provenance=event.provenance.value,
            charge_ref=event.charge_ref,
            gateway_status=event.gateway_status,
            failure_reason=event.failure_reason,
            created_at=event.created_at or utcnow(),
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(record)

    async def list_events(
        self, limit: int = 100, date_key: Optional[str] = None
    ) -> List[SettlementEvent]:
        stmt = select(SettlementEventRecord)
        if date_key is not None:
            stmt = stmt.where(SettlementEventRecord.date_key == date_key)
        stmt = stmt.order_by(
            SettlementEventRecord.created_at.desc(), SettlementEventRecord.id.desc()
        ).limit(limit)
        async with self._session_factory() as session:
            records = (await session.execute(stmt)).scalars().all()
        return [_event_from_record(record) for record in records]

    async def upsert_queue_entry(self, entry: QueueEntry) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                record = await session.get(QueueEntryRecord, entry.key)
                if record is None:
                    record = QueueEntryRecord(uid=entry.key)
                    session.add(record)
                record.crown_price = entry.crown_price
                record.is_active = entry.is_active
                record.price_joined_at = entry.price_joined_at
                record.updated_at = entry.updated_at or utcnow()

    async def list_queue_tier(self, crown_price: Decimal) -> List[QueueEntry]:
        stmt = select(QueueEntryRecord).where(
            QueueEntryRecord.is_active.is_(True),
            QueueEntryRecord.crown_price == crown_price,
        )
        async with self._session_factory() as session:
            records = (await session.execute(stmt)).scalars().all()
        return [
            QueueEntry(
                key=record.uid,
                crown_price=record.crown_price,
                is_active=record.is_active,
                price_joined_at=_aware(record.price_joined_at),
                updated_at=_aware(record.updated_at),
            )
            for record in records
        ]
