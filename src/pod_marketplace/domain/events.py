"""Domain events exchanged between bounded contexts.

Design invariants
-----------------
1.  An event is a tagged record ``{name, payload}``, not a class hierarchy.
    Contexts agree on event *names* and payload keys; they never import
    each other's types.
2.  Every event is **immutable** (``frozen=True``; the payload is a
    read-only mapping whose lists are stored as tuples).
3.  ``event_id`` is a UUID4 generated at creation time; deferred handlers
    use it as their idempotency key.
4.  ``payload`` is JSON-serialisable and carries the denormalised fields
    subscribers need, so they do not have to re-query the publisher.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from pod_marketplace.core.ids import new_id as _uuid
from pod_marketplace.core.ids import utc_now as _now

from .models import Product, User

# ---------------------------------------------------------------------------
# Event names
# ---------------------------------------------------------------------------

PRODUCT_CREATED = "product.created"
PRODUCT_UPDATED = "product.updated"
PRODUCT_DELETED = "product.deleted"
USER_REGISTERED = "user.registered"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DomainEvent:
    """Immutable record of a committed, business-significant state change.

    Shared fields
    ~~~~~~~~~~~~~
    name         Symbolic event name, e.g. ``"product.created"``.
    payload      Event-specific, JSON-safe data.
    event_id     Unique identity (UUID4).  Idempotency key.
    occurred_at  UTC creation time.
    """

    name: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=_uuid)
    occurred_at: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", _freeze(self.payload))

    def __hash__(self) -> int:
        # event_id is the identity; the frozen payload is not hashable.
        return hash(self.event_id)

    def payload_dict(self) -> dict[str, Any]:
        """Return a mutable, JSON-ready copy of the payload."""
        return _thaw(self.payload)


# =========================================================================
# Catalog  (writer: application.use_cases)
# =========================================================================

def _product_fields(product: Product) -> dict[str, Any]:
    return {
        "product_id": product.id,
        "seller_id": product.seller_id,
        "design_id": product.design_id,
        "title": product.title,
        "price_cents": product.price_cents,
        "status": product.status.value,
    }


def product_created(product: Product) -> DomainEvent:
    """A new product row committed."""
    return DomainEvent(name=PRODUCT_CREATED, payload=_product_fields(product))


def product_updated(product: Product, changed_fields: set[str]) -> DomainEvent:
    """An existing product row was replaced; ``changed_fields`` is sorted."""
    payload = _product_fields(product)
    payload["changed_fields"] = sorted(changed_fields)
    return DomainEvent(name=PRODUCT_UPDATED, payload=payload)


def product_deleted(product_id: str) -> DomainEvent:
    return DomainEvent(name=PRODUCT_DELETED, payload={"product_id": product_id})


# =========================================================================
# Accounts
# =========================================================================

def user_registered(user: User) -> DomainEvent:
    return DomainEvent(
        name=USER_REGISTERED,
        payload={
            "user_id": user.id,
            "name": user.name,
            "email": user.email,
            "is_seller": user.is_seller,
        },
    )
