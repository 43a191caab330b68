"""Domain event bus — name-routed, with synchronous and deferred delivery."""

from pod_marketplace.bus.bus import DomainEventBus, create_event_bus, create_task_queue
from pod_marketplace.bus.envelope import DeferredTask, EventEnvelope
from pod_marketplace.bus.queue import DeadLetter, InMemoryTaskQueue, TaskQueue
from pod_marketplace.bus.registry import HandlerRegistry, Subscription
from pod_marketplace.bus.retry import RetryPolicy
from pod_marketplace.bus.worker import DeferredWorker

__all__ = [
    "DeadLetter",
    "DeferredTask",
    "DeferredWorker",
    "DomainEventBus",
    "EventEnvelope",
    "HandlerRegistry",
    "InMemoryTaskQueue",
    "RetryPolicy",
    "Subscription",
    "TaskQueue",
    "create_event_bus",
    "create_task_queue",
]
