"""List-products workflow: one page of products with seller and design.

Query budget: one page query (+ one count query when the total is
requested) + one ``find_by_ids`` for sellers + one for designs, however
many products are on the page.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pod_marketplace.domain.models import Design, Product, User
from pod_marketplace.domain.repositories import AggregateRepository, Page, PageRequest
from pod_marketplace.hydration.batch import (
    BatchHydrator,
    HydrationResult,
    Reference,
    Resolved,
    ResolutionContext,
)


def seller_summary(user: User) -> dict[str, Any]:
    return {"id": user.id, "name": user.name}


def design_summary(design: Design) -> dict[str, Any]:
    return {"id": design.id, "title": design.title, "image_path": design.image_path}


def _relation_to_dict(value: Any) -> dict[str, Any] | None:
    if value is None:
        return None
    if isinstance(value, Resolved):
        return value.value
    return {"id": value.id, "unresolved": True}


@dataclass(frozen=True)
class ProductListing:
    """A page of products plus their resolved relations."""

    page: Page[Product]
    hydration: HydrationResult

    @property
    def context(self) -> ResolutionContext:
        return self.hydration.context

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready shape handed to the response layer."""
        return {
            "data": [
                {
                    "id": item.aggregate.id,
                    "title": item.aggregate.title,
                    "price_cents": item.aggregate.price_cents,
                    "status": item.aggregate.status.value,
                    "seller": _relation_to_dict(item.relation("seller")),
                    "design": _relation_to_dict(item.relation("design")),
                }
                for item in self.hydration.items
            ],
            "meta": {
                "current_page": self.page.current_page,
                "last_page": self.page.last_page,
                "per_page": self.page.per_page,
                "total": self.page.total,
            },
        }


class ListProducts:
    def __init__(
        self,
        products: AggregateRepository[Product],
        users: AggregateRepository[User],
        designs: AggregateRepository[Design],
        hydrator: BatchHydrator | None = None,
    ) -> None:
        self._products = products
        self._references = (
            Reference("seller_id", users, summarize=seller_summary),
            Reference("design_id", designs, summarize=design_summary),
        )
        self._hydrator = hydrator or BatchHydrator()

    async def execute(
        self,
        request: PageRequest,
        context: ResolutionContext | None = None,
    ) -> ProductListing:
        page = await self._products.find_page(request)
        hydration = await self._hydrator.hydrate(page.items, self._references, context)
        return ProductListing(page=page, hydration=hydration)
