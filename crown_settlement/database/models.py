"""SQLAlchemy database models for crown settlement."""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

CROWN_STATUS_ID = 1

# SQLite only auto-increments INTEGER primary keys
AutoIncrementId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """
    Candidate (user) records.

    Written by the profile and payment flows; the settlement engine only
    reads bids, eligibility and payment references from here.
    """

    __tablename__ = "users"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    crown_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    crown_price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    crown_offer_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    crown_price_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    crown_offer_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_default_payment_method_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    default_payment_method_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    card_brand: Mapped[str | None] = mapped_column(String(50), nullable=True)
    card_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint("crown_price IS NULL OR crown_price >= 0", name="non_negative_bid"),
        Index("idx_users_crown_price_desc", "crown_price", postgresql_ops={"crown_price": "DESC"}),
    )

    def __repr__(self) -> str:
        """String representation of User."""
        return f"<User(uid={self.uid}, crown_price={self.crown_price}, active={self.is_active})>"


class CrownStatusRecord(Base):
    """
    Crown status singleton (always row id 1).

    Holds the current titleholder, the public display snapshot, the
    settlement lock and the last-attempt diagnostics.
    """

    __tablename__ = "crown_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=CROWN_STATUS_ID)

    active_winner_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    active_charge_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active_charge_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    settlement_date_key: Mapped[str | None] = mapped_column(String(10), nullable=True)
    crowned_since: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String(20), nullable=True)

    champion_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    champion_bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    champion_photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    lock_holder_since: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    lock_holder_date_key: Mapped[str | None] = mapped_column(String(10), nullable=True)

    last_attempt_date_key: Mapped[str | None] = mapped_column(String(10), nullable=True)
    last_attempt_outcome: Mapped[str | None] = mapped_column(String(50), nullable=True)

    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(f"id = {CROWN_STATUS_ID}", name="crown_status_singleton"),
        CheckConstraint(
            "(lock_holder_since IS NULL) = (lock_holder_date_key IS NULL)",
            name="lock_fields_paired",
        ),
    )

    def __repr__(self) -> str:
        """String representation of CrownStatusRecord."""
        return (
            f"<CrownStatusRecord(winner={self.active_winner_key}, "
            f"settled_for={self.settlement_date_key}, locked={self.lock_holder_since is not None})>"
        )


class SettlementEventRecord(Base):
    """
    Settlement events audit trail table.

    One row per attempt outcome. Immutable once written.
    """

    __tablename__ = "settlement_events"

    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(10), nullable=False)
    candidate_key: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    charge_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    provenance: Mapped[str] = mapped_column(String(20), nullable=False)
    charge_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gateway_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), index=True
    )

    __table_args__ = (
        CheckConstraint("event_type IN ('WIN', 'FAIL')", name="valid_event_type"),
        CheckConstraint("provenance IN ('nightly', 'manual')", name="valid_provenance"),
        Index("idx_settlement_events_date_type", "date_key", "event_type"),
    )

    def __repr__(self) -> str:
        """String representation of SettlementEventRecord."""
        return (
            f"<SettlementEventRecord(id={self.id}, type={self.event_type}, "
            f"candidate={self.candidate_key}, date={self.date_key})>"
        )


class QueueEntryRecord(Base):
    """
    Public queue projection, one row per candidate.

    Rebuilt from ``users`` by the profile flows; holds nothing private.
    """

    __tablename__ = "queue_entries"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    crown_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price_joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    __table_args__ = (Index("idx_queue_entries_tier", "is_active", "crown_price"),)

    def __repr__(self) -> str:
        """String representation of QueueEntryRecord."""
        return f"<QueueEntryRecord(uid={self.uid}, crown_price={self.crown_price}, active={self.is_active})>"
