"""
Per-job bookkeeping: seen place ids and API spend
"""

from dataclasses import dataclass
from typing import Optional, Set


class Deduplicator:
    """Accepts each place_id once within the active scope"""

    def __init__(self):
        self._seen: Set[str] = set()

    def accept(self, place_id: Optional[str]) -> bool:
        """
        Returns True and records the id the first time it is presented,
        False afterwards. Missing or empty ids are never accepted.
        """
        if not place_id or place_id in self._seen:
            return False
        self._seen.add(place_id)
        return True

    def reset(self):
        """Start a new scope (new brand or new job)"""
        self._seen.clear()

    @property
    def count(self) -> int:
        return len(self._seen)


@dataclass
class CostTracker:
    """Track API calls and their cost against a hard ceiling"""
    unit_cost: float = 0.017
    ceiling: Optional[float] = None
    total_calls: int = 0

    @property
    def cost(self) -> float:
        return self.total_calls * self.unit_cost

    def add_calls(self, n: int) -> float:
        if n < 0:
            raise ValueError("call count cannot be negative")
        self.total_calls += n
        return self.cost

    def exceeds(self, ceiling: Optional[float] = None) -> bool:
        limit = self.ceiling if ceiling is None else ceiling
        if limit is None:
            return False
        return self.cost > limit

    def summary(self) -> str:
        return f"API Usage: {self.total_calls} calls. Est. cost: {self.cost:.2f}"
