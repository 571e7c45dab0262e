"""Skip (override) registry — at most one time-bounded forced block per subject.

Expiry is passive: callers prune at the start of each reconciliation tick,
and get() ignores a skip whose `until` has passed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Skip:
    """Forces a subject blocked until the given instant."""

    until: datetime

    def is_active(self, now: datetime) -> bool:
        return now < self.until


class SkipRegistry:
    """Memory-resident skips keyed by subject tracker."""

    def __init__(self) -> None:
        self._skips: dict[int, Skip] = {}

    def __len__(self) -> int:
        return len(self._skips)

    def start(self, tracker: int, until: datetime) -> Skip:
        """Record a skip, replacing any existing one for the subject."""
        skip = Skip(until=until)
        self._skips[tracker] = skip
        return skip

    def cancel(self, tracker: int) -> Skip | None:
        """Remove a subject's skip. Returns the removed skip, if any."""
        return self._skips.pop(tracker, None)

    def get(self, tracker: int, now: datetime) -> Skip | None:
        """Return the subject's skip if it is still active at `now`."""
        skip = self._skips.get(tracker)
        if skip is not None and skip.is_active(now):
            return skip
        return None

    def prune(self, now: datetime) -> list[int]:
        """Drop every expired skip. Returns the trackers that were pruned."""
        expired = [tracker for tracker, skip in self._skips.items() if not skip.is_active(now)]
        for tracker in expired:
            del self._skips[tracker]
        return expired
