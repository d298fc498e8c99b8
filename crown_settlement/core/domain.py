"""
Domain types for crown settlement.

Candidates are read-only inputs owned by the profile and payment flows.
Crown status and settlement events are written only by the settlement
engine and the manual override path.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Settlement event kinds."""

    WIN = "WIN"
    FAIL = "FAIL"


class Provenance(str, Enum):
    """Which entry point produced a crown assignment or event."""

    NIGHTLY = "nightly"
    MANUAL = "manual"


class LockState(str, Enum):
    """Result of trying to take the settlement lock."""

    ACQUIRED = "acquired"
    ALREADY_SETTLED = "already_settled"
    ALREADY_SETTLING = "already_settling"


class NoWinnerReason(str, Enum):
    """Disposition recorded on crown status when a run crowns nobody."""

    NO_CANDIDATES = "no_candidates"
    NO_ACTIVE_CANDIDATES = "no_active_candidates"
    ALL_FAILED = "all_failed"


class SettlementStatus(str, Enum):
    """Final status of one settlement invocation."""

    WON = "won"
    ALREADY_SETTLED = "already_settled"
    ALREADY_SETTLING = "already_settling"
    NO_CANDIDATES = "no_candidates"
    NO_ACTIVE_CANDIDATES = "no_active_candidates"
    ALL_FAILED = "all_failed"


class Candidate(BaseModel):
    """A bidder as stored by the profile and payment flows."""

    model_config = ConfigDict(frozen=True)

    key: str
    bid_amount: Optional[Decimal] = None
    bid_amount_cents: Optional[int] = None
    bid_offer_cents: Optional[int] = None
    bid_updated_at: Optional[Any] = None
    offer_updated_at: Optional[Any] = None
    updated_at: Optional[Any] = None
    created_at: Optional[Any] = None
    is_active: bool = False
    stripe_customer_id: Optional[str] = None
    stripe_default_payment_method_id: Optional[str] = None
    default_payment_method_id: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    display_name: Optional[str] = None
    bio: Optional[str] = None
    photo_url: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None


class CrownStatus(BaseModel):
    """The singleton record describing the titleholder and settlement state."""

    active_winner_key: Optional[str] = None
    active_charge_cents: Optional[int] = None
    active_charge_ref: Optional[str] = None
    settlement_date_key: Optional[str] = None
    crowned_since: Optional[datetime] = None
    assigned_by: Optional[Provenance] = None

    champion_name: Optional[str] = None
    champion_bio: Optional[str] = None
    champion_photo_url: Optional[str] = None

    lock_holder_since: Optional[datetime] = None
    lock_holder_date_key: Optional[str] = None

    last_attempt_date_key: Optional[str] = None
    last_attempt_outcome: Optional[NoWinnerReason] = None

    updated_at: Optional[datetime] = None

    @property
    def is_locked(self) -> bool:
        return self.lock_holder_since is not None


class SettlementEvent(BaseModel):
    """One append-only audit record per attempt outcome."""

    event_type: EventType
    candidate_key: str
    charge_cents: int = 0
    date_key: str
    provenance: Provenance = Provenance.NIGHTLY
    charge_ref: Optional[str] = None
    gateway_status: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ChargeResult:
    """What the payment gateway reports for a confirmed charge attempt."""

    status: str
    charge_ref: str

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True)
class ChargeOutcome:
    """Result of the charge loop: a winner, or every candidate failed."""

    winner_key: Optional[str] = None
    amount_cents: Optional[int] = None
    charge_ref: Optional[str] = None
    attempts: int = 0

    @property
    def won(self) -> bool:
        return self.winner_key is not None


@dataclass(frozen=True)
class SettlementOutcome:
    """What one settlement invocation did."""

    status: SettlementStatus
    date_key: str
    winner_key: Optional[str] = None
    amount_cents: Optional[int] = None
    charge_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ok": self.status
            in (
                SettlementStatus.WON,
                SettlementStatus.ALREADY_SETTLED,
                SettlementStatus.ALREADY_SETTLING,
            ),
            "status": self.status.value,
            "date_key": self.date_key,
        }
        if self.winner_key is not None:
            payload.update(
                winner_uid=self.winner_key,
                amount_cents=self.amount_cents,
                payment_intent_id=self.charge_ref,
            )
        return payload


class AssignmentResult(BaseModel):
    """Successful manual crown assignment."""

    ok: bool = True
    uid: str
    amount_cents: int
    payment_intent_id: str
    date_key: str = Field(..., description="Day the charge was settled for")


class QueueEntry(BaseModel):
    """
    Public projection of a candidate's place in the bidding queue.

    Carries no profile or payment data, so it is safe to expose to other
    users. Candidates at the same price are served first come, first served
    by ``price_joined_at``.
    """

    key: str
    crown_price: Decimal = Decimal("0")
    is_active: bool = False
    price_joined_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
