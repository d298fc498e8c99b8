"""Core crown settlement logic: domain types, ranking and amount resolution."""
from .domain import (
    AssignmentResult,
    Candidate,
    ChargeOutcome,
    ChargeResult,
    CrownStatus,
    EventType,
    LockState,
    NoWinnerReason,
    Provenance,
    QueueEntry,
    SettlementEvent,
    SettlementOutcome,
    SettlementStatus,
)
from .idempotency import generate_key
from .ranking import rank

__all__ = [
    "AssignmentResult",
    "Candidate",
    "ChargeOutcome",
    "ChargeResult",
    "CrownStatus",
    "EventType",
    "LockState",
    "NoWinnerReason",
    "Provenance",
    "QueueEntry",
    "SettlementEvent",
    "SettlementOutcome",
    "SettlementStatus",
    "generate_key",
    "rank",
]
