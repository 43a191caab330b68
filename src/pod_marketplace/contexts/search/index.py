"""In-process product search index.

Kept current by synchronous handlers, so a product is searchable as soon
as the request that created it returns.  Every operation is an upsert or
remove keyed by product id, which makes re-applying an event harmless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pod_marketplace.bus.registry import HandlerRegistry
from pod_marketplace.core.enums import DeliveryMode
from pod_marketplace.domain.events import (
    PRODUCT_CREATED,
    PRODUCT_DELETED,
    PRODUCT_UPDATED,
    DomainEvent,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchDocument:
    product_id: str
    seller_id: str
    title: str
    status: str


class SearchIndex:
    """Title search over the product catalog."""

    def __init__(self) -> None:
        self._documents: dict[str, SearchDocument] = {}

    def upsert(self, document: SearchDocument) -> None:
        self._documents[document.product_id] = document

    def remove(self, product_id: str) -> None:
        self._documents.pop(product_id, None)

    def get(self, product_id: str) -> SearchDocument | None:
        return self._documents.get(product_id)

    def search(self, term: str, *, status: str | None = None) -> list[SearchDocument]:
        """Case-insensitive substring match on title, ordered by product id."""
        needle = term.casefold()
        hits = [
            doc for doc in self._documents.values()
            if needle in doc.title.casefold()
            and (status is None or doc.status == status)
        ]
        return sorted(hits, key=lambda d: int(d.product_id) if d.product_id.isdigit() else 0)

    def __len__(self) -> int:
        return len(self._documents)


class SearchIndexer:
    """Event handlers maintaining a :class:`SearchIndex`."""

    def __init__(self, index: SearchIndex) -> None:
        self._index = index

    async def on_product_saved(self, event: DomainEvent) -> None:
        payload: Any = event.payload
        self._index.upsert(
            SearchDocument(
                product_id=payload["product_id"],
                seller_id=payload["seller_id"],
                title=payload["title"],
                status=payload["status"],
            )
        )

    async def on_product_deleted(self, event: DomainEvent) -> None:
        self._index.remove(event.payload["product_id"])


def register(registry: HandlerRegistry, index: SearchIndex) -> SearchIndexer:
    indexer = SearchIndexer(index)
    registry.subscribe(
        PRODUCT_CREATED, indexer.on_product_saved, DeliveryMode.SYNC,
        handler_id="search.index_product",
    )
    registry.subscribe(
        PRODUCT_UPDATED, indexer.on_product_saved, DeliveryMode.SYNC,
        handler_id="search.index_product",
    )
    registry.subscribe(
        PRODUCT_DELETED, indexer.on_product_deleted, DeliveryMode.SYNC,
        handler_id="search.remove_product",
    )
    return indexer
