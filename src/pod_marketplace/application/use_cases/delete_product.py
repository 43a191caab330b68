"""Delete-product workflow."""

from __future__ import annotations

from pod_marketplace.bus.bus import DomainEventBus
from pod_marketplace.core.ids import DomainId
from pod_marketplace.domain.events import product_deleted
from pod_marketplace.domain.models import Product
from pod_marketplace.domain.repositories import AggregateRepository


class DeleteProduct:
    def __init__(
        self,
        products: AggregateRepository[Product],
        bus: DomainEventBus,
    ) -> None:
        self._products = products
        self._bus = bus

    async def execute(self, product_id: DomainId) -> bool:
        removed = await self._products.delete(product_id)
        if removed:
            await self._bus.publish(product_deleted(product_id))
        return removed
