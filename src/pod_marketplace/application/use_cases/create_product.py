"""Create-product workflow.

Steps:
1. validate the request (``ProductCreateInput``);
2. ``ProductRepository.create`` — one committed transaction;
3. publish ``product.created`` with the denormalised product fields.

Publish happens strictly after the commit.  If step 2 raises, the error
propagates unchanged and no event is published.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pod_marketplace.application.inputs import ProductCreateInput
from pod_marketplace.bus.bus import DomainEventBus
from pod_marketplace.domain.events import product_created
from pod_marketplace.domain.models import Product
from pod_marketplace.domain.repositories import AggregateRepository

logger = logging.getLogger(__name__)


class CreateProduct:
    def __init__(
        self,
        products: AggregateRepository[Product],
        bus: DomainEventBus,
    ) -> None:
        self._products = products
        self._bus = bus

    async def execute(self, fields: Mapping[str, Any]) -> Product:
        request = ProductCreateInput.model_validate(dict(fields))
        product = await self._products.create(request.to_fields())
        logger.info("Product %s created by seller %s", product.id, product.seller_id)

        await self._bus.publish(product_created(product))
        return product
