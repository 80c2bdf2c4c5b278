from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from duplicator.core.models import ObjectKey, Outcome, OutcomeKind


@dataclass
class _Pending:
    key: ObjectKey
    due: float
    seq: int


class WorkQueue:
    """Per-key work queue with retry backoff.

    A key is pending at most once and in flight at most once. Keys added
    while in flight are re-queued when the running reconcile finishes.
    """

    def __init__(
        self,
        *,
        base_delay_s: float = 1.0,
        max_delay_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self._clock = clock
        self._pending: dict[ObjectKey, _Pending] = {}
        self._in_flight: set[ObjectKey] = set()
        self._dirty: set[ObjectKey] = set()
        self._attempts: dict[ObjectKey, int] = {}
        self._seq = 0

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, key: ObjectKey, delay_s: float = 0.0) -> None:
        if key in self._in_flight:
            self._dirty.add(key)
            return
        due = self._clock() + max(0.0, delay_s)
        current = self._pending.get(key)
        if current is not None:
            current.due = min(current.due, due)
            return
        self._seq += 1
        self._pending[key] = _Pending(key=key, due=due, seq=self._seq)

    def attempts(self, key: ObjectKey) -> int:
        return self._attempts.get(key, 0)

    def backoff_s(self, attempts: int) -> float:
        if attempts <= 0:
            return 0.0
        return min(self.base_delay_s * (2 ** (attempts - 1)), self.max_delay_s)

    def next_due_in(self) -> float | None:
        if not self._pending:
            return None
        earliest = min(p.due for p in self._pending.values())
        return max(0.0, earliest - self._clock())

    def pop_due(self) -> ObjectKey | None:
        now = self._clock()
        due = [p for p in self._pending.values() if p.due <= now]
        if not due:
            return None
        entry = min(due, key=lambda p: (p.due, p.seq))
        del self._pending[entry.key]
        self._in_flight.add(entry.key)
        return entry.key

    def done(self, key: ObjectKey, outcome: Outcome) -> None:
        self._in_flight.discard(key)
        dirty = key in self._dirty
        self._dirty.discard(key)
        if outcome.kind is OutcomeKind.RETRY:
            attempts = self._attempts.get(key, 0) + 1
            self._attempts[key] = attempts
            self.add(key, 0.0 if dirty else self.backoff_s(attempts))
            return
        # FATAL is not requeued; only a new change event brings the key back.
        self._attempts.pop(key, None)
        if dirty:
            self.add(key)
