"""Wire format for deferred delivery.

``EventEnvelope`` is the only artifact that leaves the process: it is what
the durable task queue stores and what a worker decodes after a crash.
Changing its shape requires bumping ``version``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pod_marketplace.domain.events import DomainEvent

ENVELOPE_VERSION = 1


class EventEnvelope(BaseModel):
    """Serializable snapshot of a :class:`DomainEvent`."""

    model_config = ConfigDict(frozen=True)

    version: int = ENVELOPE_VERSION
    name: str
    event_id: str
    occurred_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_event(cls, event: DomainEvent) -> EventEnvelope:
        return cls(
            name=event.name,
            event_id=event.event_id,
            occurred_at=event.occurred_at,
            payload=event.payload_dict(),
        )

    def to_event(self) -> DomainEvent:
        return DomainEvent(
            name=self.name,
            payload=self.payload,
            event_id=self.event_id,
            occurred_at=self.occurred_at,
        )


class DeferredTask(BaseModel):
    """One (event, deferred handler) pair queued for out-of-band execution.

    ``attempt`` starts at 1 and is incremented on every retry.
    """

    model_config = ConfigDict(frozen=True)

    handler_id: str
    envelope: EventEnvelope
    attempt: int = 1

    def next_attempt(self) -> DeferredTask:
        return self.model_copy(update={"attempt": self.attempt + 1})

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> DeferredTask:
        return cls.model_validate_json(raw)
