"""Background workers for scheduled settlement."""
from .settlement_worker import start_settlement_worker

__all__ = ["start_settlement_worker"]
