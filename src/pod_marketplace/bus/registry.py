"""Handler registry keyed by event name.

Registration is a one-time setup step: bounded contexts call
``subscribe`` while the process boots, then the registry is frozen and
becomes read-only for the rest of the process lifetime.  Because it never
changes after that point, concurrent publishes read it without a lock.

Handlers for one event name are kept in registration order.  Synchronous
and deferred handlers are ordered independently of each other.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pod_marketplace.core.enums import DeliveryMode
from pod_marketplace.core.errors import RegistrationError
from pod_marketplace.domain.events import DomainEvent

logger = logging.getLogger(__name__)

# Type alias for async event handlers.
EventHandler = Callable[[DomainEvent], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    """One handler bound to one event name."""

    event_name: str
    handler_id: str
    handler: EventHandler
    mode: DeliveryMode


def default_handler_id(handler: EventHandler) -> str:
    """``module.qualname`` of the handler; stable across processes."""
    module = getattr(handler, "__module__", None) or "unknown"
    name = getattr(handler, "__qualname__", None) or type(handler).__qualname__
    return f"{module}.{name}"


class HandlerRegistry:
    """Append-only, freezable mapping of event name → subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        self._frozen = False

    def subscribe(
        self,
        event_name: str,
        handler: EventHandler,
        mode: DeliveryMode = DeliveryMode.SYNC,
        *,
        handler_id: str | None = None,
    ) -> Subscription:
        """Register *handler* for *event_name*.

        Deferred handlers are looked up by ``handler_id`` in the worker
        process, so the id must be the same in every process that builds
        the registry.

        Raises:
            RegistrationError: if the registry is frozen or the id is
                already registered for this event name.
        """
        if self._frozen:
            raise RegistrationError(
                f"Registry is frozen; cannot subscribe to {event_name!r}"
            )

        hid = handler_id or default_handler_id(handler)
        if any(s.handler_id == hid for s in self._subscriptions[event_name]):
            raise RegistrationError(
                f"Handler {hid!r} already registered for {event_name!r}"
            )

        sub = Subscription(
            event_name=event_name,
            handler_id=hid,
            handler=handler,
            mode=DeliveryMode(mode),
        )
        self._subscriptions[event_name].append(sub)
        logger.debug("Subscribed %s to %s (%s)", hid, event_name, sub.mode.value)
        return sub

    def freeze(self) -> None:
        """Close registration.  Idempotent."""
        if not self._frozen:
            self._frozen = True
            logger.info(
                "Handler registry frozen: %d event names, %d handlers",
                len(self._subscriptions),
                sum(len(s) for s in self._subscriptions.values()),
            )

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -- Lookups -------------------------------------------------------------

    def handlers_for(
        self, event_name: str, mode: DeliveryMode,
    ) -> tuple[Subscription, ...]:
        """Subscriptions of one mode, in registration order."""
        return tuple(
            s for s in self._subscriptions.get(event_name, ()) if s.mode is mode
        )

    def get(self, event_name: str, handler_id: str) -> Subscription | None:
        for sub in self._subscriptions.get(event_name, ()):
            if sub.handler_id == handler_id:
                return sub
        return None

    def event_names(self) -> list[str]:
        return sorted(name for name, subs in self._subscriptions.items() if subs)
