"""Task queue abstraction and in-memory implementation.

The queue is the boundary to the durable, at-least-once task store that
feeds deferred handlers.  Tasks cross it as JSON strings (serialised
:class:`DeferredTask`), exactly as they would cross a process boundary.

Contract
--------
*  ``enqueue`` appends a task; it returns once the task is stored.
*  ``reserve`` hands out up to *n* ready tasks.  A reserved task stays
   owned by the caller until ``ack``, ``schedule_retry`` or
   ``dead_letter``; if the caller dies first the task is delivered again.
*  ``schedule_retry`` acknowledges the current delivery and parks the next
   attempt until its delay has elapsed.
*  ``dead_letter`` acknowledges the delivery and moves the task to a store
   an operator can inspect.

This module provides:

*  ``TaskQueue`` — the protocol.
*  ``InMemoryTaskQueue`` — deque-backed implementation for tests and
   single-process development.  Not durable.
"""

from __future__ import annotations

import bisect
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from pod_marketplace.core.clock import IClock, WallClock

from .envelope import DeferredTask

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    """A delivered task.  ``receipt`` identifies this delivery."""

    receipt: Any
    raw: str


@dataclass(frozen=True)
class DeadLetter:
    """Record of a task that will not be retried."""

    raw: str
    error: str
    handler_id: str = "unknown"
    event_name: str = "unknown"
    attempts: int = 0


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

@runtime_checkable
class TaskQueue(Protocol):
    """Durable, at-least-once queue of deferred handler tasks."""

    async def start(self) -> None: ...
    async def stop(self) -> None: ...

    async def enqueue(self, task: DeferredTask) -> None:
        """Store *task* for out-of-band execution."""
        ...

    async def reserve(self, max_tasks: int = 10) -> list[Reservation]:
        """Deliver up to *max_tasks* ready tasks (may be empty)."""
        ...

    async def ack(self, receipt: Any) -> None:
        """Mark a delivery as done."""
        ...

    async def schedule_retry(
        self, receipt: Any, task: DeferredTask, delay_seconds: float,
    ) -> None:
        """Ack *receipt* and make *task* ready again after the delay."""
        ...

    async def dead_letter(self, receipt: Any, letter: DeadLetter) -> None:
        """Ack *receipt* and keep *letter* for operators."""
        ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

@dataclass(order=True)
class _Delayed:
    due: datetime
    seq: int
    raw: str = field(compare=False)


class InMemoryTaskQueue:
    """In-process queue.  Deterministic when driven by a ``SimClock``."""

    def __init__(self, clock: IClock | None = None) -> None:
        self._clock = clock or WallClock()
        self._ready: deque[str] = deque()
        self._delayed: list[_Delayed] = []
        self._in_flight: dict[int, str] = {}
        self._dead_letters: list[DeadLetter] = []
        self._receipts = itertools.count(1)
        self._seq = itertools.count()

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def enqueue(self, task: DeferredTask) -> None:
        self._ready.append(task.to_json())

    async def enqueue_raw(self, raw: str) -> None:
        """Append an already-serialised task (re-delivery, tests)."""
        self._ready.append(raw)

    async def reserve(self, max_tasks: int = 10) -> list[Reservation]:
        self._promote_due()
        out: list[Reservation] = []
        while self._ready and len(out) < max_tasks:
            raw = self._ready.popleft()
            receipt = next(self._receipts)
            self._in_flight[receipt] = raw
            out.append(Reservation(receipt=receipt, raw=raw))
        return out

    async def ack(self, receipt: Any) -> None:
        self._in_flight.pop(receipt, None)

    async def schedule_retry(
        self, receipt: Any, task: DeferredTask, delay_seconds: float,
    ) -> None:
        due = self._clock.now() + timedelta(seconds=delay_seconds)
        bisect.insort(self._delayed, _Delayed(due, next(self._seq), task.to_json()))
        await self.ack(receipt)

    async def dead_letter(self, receipt: Any, letter: DeadLetter) -> None:
        self._dead_letters.append(letter)
        await self.ack(receipt)

    def redeliver_in_flight(self) -> int:
        """Put unacknowledged deliveries back in front of the queue.

        Models a worker crash: whatever it had reserved is delivered again.
        """
        pending = list(self._in_flight.values())
        self._in_flight.clear()
        self._ready.extendleft(reversed(pending))
        return len(pending)

    def _promote_due(self) -> None:
        now = self._clock.now()
        while self._delayed and self._delayed[0].due <= now:
            self._ready.append(self._delayed.pop(0).raw)

    # -- Observability -------------------------------------------------------

    @property
    def dead_letters(self) -> list[DeadLetter]:
        return list(self._dead_letters)

    def clear_dead_letters(self) -> list[DeadLetter]:
        """Drain the dead-letter list and return all entries."""
        drained = self._dead_letters[:]
        self._dead_letters.clear()
        return drained

    @property
    def ready_count(self) -> int:
        return len(self._ready)

    @property
    def delayed_count(self) -> int:
        return len(self._delayed)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)
