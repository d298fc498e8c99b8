"""FastAPI application and routes."""
from .main import app
from .schemas import (
    AssignCrownRequest,
    AssignCrownResponse,
    CrownSnapshotResponse,
    SettlementResponse,
)

__all__ = [
    "app",
    "AssignCrownRequest",
    "AssignCrownResponse",
    "CrownSnapshotResponse",
    "SettlementResponse",
]
