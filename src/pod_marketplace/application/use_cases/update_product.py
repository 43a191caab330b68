"""Update-product workflow.  Publishes only when a row was replaced."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pod_marketplace.application.inputs import ProductUpdateInput
from pod_marketplace.bus.bus import DomainEventBus
from pod_marketplace.core.ids import DomainId
from pod_marketplace.domain.events import product_updated
from pod_marketplace.domain.models import Product
from pod_marketplace.domain.repositories import AggregateRepository

logger = logging.getLogger(__name__)


class UpdateProduct:
    def __init__(
        self,
        products: AggregateRepository[Product],
        bus: DomainEventBus,
    ) -> None:
        self._products = products
        self._bus = bus

    async def execute(
        self, product_id: DomainId, fields: Mapping[str, Any],
    ) -> Product | None:
        """Return the replaced product, or ``None`` if it does not exist."""
        request = ProductUpdateInput.model_validate(dict(fields))
        changes = request.to_fields()

        product = await self._products.update(product_id, changes)
        if product is None:
            logger.info("Update of unknown product %s ignored", product_id)
            return None

        await self._bus.publish(product_updated(product, set(changes)))
        return product
