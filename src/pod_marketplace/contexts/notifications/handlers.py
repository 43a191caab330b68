"""Deferred handlers writing seller notifications.

Run by the :class:`~pod_marketplace.bus.worker.DeferredWorker`, so each
may see the same envelope more than once.  Rows are keyed on
``(event_id, recipient_id)``; a re-delivery finds the row already there
and does nothing.
"""

from __future__ import annotations

import logging

from pod_marketplace.bus.registry import HandlerRegistry
from pod_marketplace.core.enums import DeliveryMode
from pod_marketplace.core.ids import DomainId
from pod_marketplace.domain.events import PRODUCT_CREATED, USER_REGISTERED, DomainEvent

from .repository import NotificationRepository

logger = logging.getLogger(__name__)

PRODUCT_LISTED = "product_listed"
SELLER_WELCOME = "seller_welcome"


def _format_price(price_cents: int) -> str:
    return f"{price_cents // 100}.{price_cents % 100:02d}"


class SellerNotifier:
    """Writes inbox rows for sellers in reaction to catalog events."""

    def __init__(self, repository: NotificationRepository) -> None:
        self._repository = repository

    async def on_product_created(self, event: DomainEvent) -> None:
        payload = event.payload
        message = (
            f"Your product \"{payload['title']}\" was listed at "
            f"{_format_price(payload['price_cents'])}."
        )
        written = await self._repository.record_once(
            event.event_id,
            DomainId(payload["seller_id"]),
            PRODUCT_LISTED,
            message,
        )
        if not written:
            logger.info(
                "Skipping duplicate %s for event_id=%s", PRODUCT_LISTED, event.event_id,
            )

    async def on_user_registered(self, event: DomainEvent) -> None:
        payload = event.payload
        if not payload.get("is_seller"):
            return
        await self._repository.record_once(
            event.event_id,
            DomainId(payload["user_id"]),
            SELLER_WELCOME,
            f"Welcome to the marketplace, {payload['name']}.",
        )


def register(
    registry: HandlerRegistry, repository: NotificationRepository,
) -> SellerNotifier:
    notifier = SellerNotifier(repository)
    registry.subscribe(
        PRODUCT_CREATED, notifier.on_product_created, DeliveryMode.DEFERRED,
        handler_id="notifications.product_listed",
    )
    registry.subscribe(
        USER_REGISTERED, notifier.on_user_registered, DeliveryMode.DEFERRED,
        handler_id="notifications.seller_welcome",
    )
    return notifier
