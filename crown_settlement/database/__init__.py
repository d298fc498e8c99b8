"""Database package for crown settlement."""
from .connection import close_db, get_session_factory, init_db
from .memory import InMemoryCandidateStore
from .models import Base, CrownStatusRecord, QueueEntryRecord, SettlementEventRecord, User
from .store import CandidateStore, SqlCandidateStore

__all__ = [
    "Base",
    "User",
    "CrownStatusRecord",
    "SettlementEventRecord",
    "QueueEntryRecord",
    "CandidateStore",
    "SqlCandidateStore",
    "InMemoryCandidateStore",
    "get_session_factory",
    "init_db",
    "close_db",
]
