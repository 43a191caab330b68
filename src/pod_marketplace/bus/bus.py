"""Domain event bus and its factory.

Design goals
------------
1.  **Name-routed dispatching** — handlers register for an event *name*;
    publishers and subscribers share names and payload keys, never types.
2.  **Two delivery modes** — synchronous handlers run inline and their
    failure is raised to the publisher; deferred handlers are enqueued as
    one task each and run by a :class:`DeferredWorker`.
3.  **Frozen registrations** — the registry is frozen no later than the
    first publish; nothing is (un)subscribed at runtime.

Publish order: deferred tasks are enqueued first (in registration order),
then synchronous handlers run (in registration order).  The event describes
a write that has already committed, so deferred subscribers are told about
it even when a synchronous handler then fails.
"""

from __future__ import annotations

import logging

from pod_marketplace.core.clock import IClock
from pod_marketplace.core.config import EventBusConfig
from pod_marketplace.core.enums import BusBackend, DeliveryMode
from pod_marketplace.core.errors import HandlerFailure
from pod_marketplace.domain.events import DomainEvent
from pod_marketplace.observability import metrics

from .envelope import DeferredTask, EventEnvelope
from .queue import InMemoryTaskQueue, TaskQueue
from .redis_queue import RedisTaskQueue
from .registry import EventHandler, HandlerRegistry, Subscription

logger = logging.getLogger(__name__)


class DomainEventBus:
    """Publishes :class:`DomainEvent` records to registered handlers.

    Parameters
    ----------
    registry
        Handler registrations.  Frozen on the first publish.
    queue
        Durable task queue feeding deferred handlers.
    """

    def __init__(self, registry: HandlerRegistry, queue: TaskQueue) -> None:
        self._registry = registry
        self._queue = queue
        self._published: int = 0

    # -- Lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        self._registry.freeze()
        await self._queue.start()

    async def stop(self) -> None:
        await self._queue.stop()

    # -- Core API ----------------------------------------------------------

    def subscribe(
        self,
        event_name: str,
        handler: EventHandler,
        mode: DeliveryMode = DeliveryMode.SYNC,
        *,
        handler_id: str | None = None,
    ) -> Subscription:
        """Register *handler*; only valid before the first publish."""
        return self._registry.subscribe(
            event_name, handler, mode, handler_id=handler_id,
        )

    async def publish(self, event: DomainEvent) -> None:
        """Deliver *event* to every handler registered for ``event.name``.

        Raises
        ------
        HandlerFailure
            If a synchronous handler raises.  The original exception is
            chained as ``__cause__``; later synchronous handlers do not run.
        """
        self._registry.freeze()

        deferred = self._registry.handlers_for(event.name, DeliveryMode.DEFERRED)
        if deferred:
            envelope = EventEnvelope.from_event(event)
            for sub in deferred:
                await self._queue.enqueue(
                    DeferredTask(handler_id=sub.handler_id, envelope=envelope)
                )
            metrics.record_enqueued(event.name, len(deferred))

        self._published += 1
        metrics.record_published(event.name)
        logger.debug(
            "Published %s event_id=%s (%d deferred)",
            event.name, event.event_id, len(deferred),
        )

        for sub in self._registry.handlers_for(event.name, DeliveryMode.SYNC):
            try:
                await sub.handler(event)
            except Exception as exc:
                metrics.record_handler_failure(
                    event.name, sub.handler_id, DeliveryMode.SYNC.value,
                )
                logger.exception(
                    "Synchronous handler %s failed on %s event_id=%s",
                    sub.handler_id, event.name, event.event_id,
                )
                raise HandlerFailure(event.name, sub.handler_id, str(exc)) from exc

    # -- Accessors ---------------------------------------------------------

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def queue(self) -> TaskQueue:
        return self._queue

    @property
    def published_count(self) -> int:
        return self._published


def create_task_queue(
    config: EventBusConfig,
    clock: IClock | None = None,
) -> InMemoryTaskQueue | RedisTaskQueue:
    """Create the task queue for the configured backend.

    - MEMORY: InMemoryTaskQueue (no external deps, not durable)
    - REDIS: RedisTaskQueue (persistent, at-least-once)
    """
    if config.backend == BusBackend.MEMORY:
        return InMemoryTaskQueue(clock=clock)
    return RedisTaskQueue(
        redis_url=config.redis_url,
        stream=config.stream,
        group=config.group,
        consumer=config.consumer,
        block_ms=config.block_ms,
        claim_idle_ms=config.claim_idle_ms,
        max_stream_length=config.max_stream_length,
        clock=clock,
    )


def create_event_bus(
    config: EventBusConfig,
    registry: HandlerRegistry,
    clock: IClock | None = None,
) -> DomainEventBus:
    """Create an event bus over the configured task queue backend."""
    return DomainEventBus(registry, create_task_queue(config, clock=clock))
