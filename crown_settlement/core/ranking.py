"""Deterministic ordering of candidates for one settlement attempt."""
from typing import Iterable, List, Tuple

from crown_settlement.core.domain import Candidate
from crown_settlement.core.resolution import bid_value, tie_break_millis


def sort_key(candidate: Candidate) -> Tuple:
    # Highest bid first, then the earliest bid, then key
    return (-bid_value(candidate), tie_break_millis(candidate), candidate.key)


def rank(candidates: Iterable[Candidate]) -> List[Candidate]:
    """
    Order active candidates by bid, first mover and key.

    An empty result means no candidate is eligible, which callers report
    separately from an empty pool.
    """
    return sorted((c for c in candidates if c.is_active), key=sort_key)
