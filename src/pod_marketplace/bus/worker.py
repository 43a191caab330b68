"""Deferred handler worker.

Pulls tasks from a :class:`TaskQueue`, resolves each task's handler through
the (frozen) :class:`HandlerRegistry`, and runs it.

Failure handling:
- A failing handler never affects other tasks, other handlers of the same
  event, or the publisher.
- Every failure is logged, counted per ``event_name/handler_id`` and
  reported to the optional ``on_handler_error`` callback.
- Failed tasks are rescheduled per :class:`RetryPolicy`; once the policy
  is exhausted they are dead-lettered.
- Tasks that cannot be decoded or whose handler is not registered in this
  process are dead-lettered immediately, since retrying cannot help.

Delivery is at-least-once, so deferred handlers must be idempotent
(typically keyed on ``event.event_id``).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable

from pydantic import ValidationError

from pod_marketplace.core.enums import DeliveryMode
from pod_marketplace.observability import metrics
from pod_marketplace.observability.logger import bind_task_context

from .envelope import DeferredTask
from .queue import DeadLetter, Reservation, TaskQueue
from .registry import HandlerRegistry
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class DeferredWorker:
    """Executes deferred handler tasks.

    Parameters
    ----------
    registry:
        The same registrations the publishing process uses.
    queue:
        Source of tasks.
    retry_policy:
        Backoff and dead-letter threshold.
    on_handler_error:
        Optional callback ``(event_name, handler_id, event_id, exc)``.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        queue: TaskQueue,
        retry_policy: RetryPolicy | None = None,
        *,
        batch_size: int = 10,
        on_handler_error: Callable[[str, str, str, Exception], None] | None = None,
    ) -> None:
        self._registry = registry
        self._queue = queue
        self._retry = retry_policy or RetryPolicy()
        self._batch_size = batch_size
        self._on_handler_error = on_handler_error
        self._running = False

        # Observability
        self._error_counts: dict[str, int] = defaultdict(int)
        self._messages_processed: int = 0
        self._dead_lettered: int = 0

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def run_once(self) -> int:
        """Process one batch.  Returns the number of deliveries handled."""
        reservations = await self._queue.reserve(self._batch_size)
        for reservation in reservations:
            await self._process(reservation)
        return len(reservations)

    async def run_until_idle(self, max_batches: int = 1000) -> int:
        """Process batches until the queue has nothing ready."""
        total = 0
        for _ in range(max_batches):
            handled = await self.run_once()
            if not handled:
                break
            total += handled
        return total

    async def run_forever(self, idle_sleep: float = 0.0) -> None:
        """Consume until :meth:`stop` is called or the task is cancelled.

        Every iteration yields to the event loop, even with
        ``idle_sleep=0`` and a queue whose ``reserve`` never suspends.
        """
        self._running = True
        logger.info("Deferred worker started")
        while self._running:
            try:
                handled = await self.run_once()
                await asyncio.sleep(0 if handled else idle_sleep)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Deferred worker loop error")
                await asyncio.sleep(1)
        logger.info("Deferred worker stopped")

    def stop(self) -> None:
        self._running = False

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def _process(self, reservation: Reservation) -> None:
        try:
            task = DeferredTask.from_json(reservation.raw)
        except ValidationError as exc:
            logger.error("Undecodable deferred task: %s", exc)
            await self._dead_letter(
                reservation,
                DeadLetter(raw=reservation.raw, error="deserialization_failed"),
            )
            return

        event_name = task.envelope.name
        sub = self._registry.get(event_name, task.handler_id)
        if sub is None or sub.mode is not DeliveryMode.DEFERRED:
            logger.error(
                "No deferred handler %s registered for %s",
                task.handler_id, event_name,
            )
            await self._dead_letter(
                reservation,
                DeadLetter(
                    raw=reservation.raw,
                    error="unknown_handler",
                    handler_id=task.handler_id,
                    event_name=event_name,
                    attempts=task.attempt,
                ),
            )
            return

        event = task.envelope.to_event()
        bind_task_context(
            request_id=event.event_id,
            event_name=event_name,
            handler_id=task.handler_id,
            attempt=task.attempt,
        )
        started = time.perf_counter()
        try:
            await sub.handler(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._handle_failure(reservation, task, exc)
            return

        await self._queue.ack(reservation.receipt)
        self._messages_processed += 1
        metrics.record_task_processed(
            event_name, task.handler_id, time.perf_counter() - started,
        )

    async def _handle_failure(
        self, reservation: Reservation, task: DeferredTask, exc: Exception,
    ) -> None:
        event_name = task.envelope.name
        error_key = f"{event_name}/{task.handler_id}"
        self._error_counts[error_key] += 1
        metrics.record_handler_failure(
            event_name, task.handler_id, DeliveryMode.DEFERRED.value,
        )
        logger.exception(
            "Deferred handler error on %s event=%s (attempt %d/%d)",
            error_key,
            task.envelope.event_id,
            task.attempt,
            self._retry.max_attempts,
        )

        if self._on_handler_error is not None:
            try:
                self._on_handler_error(
                    event_name, task.handler_id, task.envelope.event_id, exc,
                )
            except Exception:
                logger.warning("on_handler_error callback failed", exc_info=True)

        if self._retry.should_retry(task.attempt):
            delay = self._retry.delay_for(task.attempt)
            await self._queue.schedule_retry(
                reservation.receipt, task.next_attempt(), delay,
            )
            return

        logger.error(
            "Dead-lettering %s event=%s after %d attempts",
            error_key, task.envelope.event_id, task.attempt,
        )
        await self._dead_letter(
            reservation,
            DeadLetter(
                raw=reservation.raw,
                error=str(exc),
                handler_id=task.handler_id,
                event_name=event_name,
                attempts=task.attempt,
            ),
        )

    async def _dead_letter(self, reservation: Reservation, letter: DeadLetter) -> None:
        await self._queue.dead_letter(reservation.receipt, letter)
        self._dead_lettered += 1
        metrics.record_dead_letter(letter.event_name, letter.handler_id)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_error_counts(self) -> dict[str, int]:
        """Return per ``event_name/handler_id`` error counts."""
        return dict(self._error_counts)

    @property
    def messages_processed(self) -> int:
        """Total tasks whose handler succeeded."""
        return self._messages_processed

    @property
    def dead_lettered(self) -> int:
        return self._dead_lettered
