"""Test the search context's index and its synchronous handlers."""

import pytest

from pod_marketplace.bus.registry import HandlerRegistry
from pod_marketplace.contexts import search
from pod_marketplace.contexts.search.index import SearchDocument, SearchIndex
from pod_marketplace.core.enums import DeliveryMode
from pod_marketplace.domain.events import DomainEvent


def _doc(pid: str, title: str, status: str = "published") -> SearchDocument:
    return SearchDocument(product_id=pid, seller_id="1", title=title, status=status)


class TestSearchIndex:
    def test_case_insensitive_substring(self):
        index = SearchIndex()
        index.upsert(_doc("2", "Blue Mug"))
        index.upsert(_doc("10", "blue shirt"))
        index.upsert(_doc("3", "Red Cap"))
        assert [d.product_id for d in index.search("BLUE")] == ["2", "10"]

    def test_status_filter(self):
        index = SearchIndex()
        index.upsert(_doc("1", "Mug", "draft"))
        index.upsert(_doc("2", "Mug", "published"))
        assert [d.product_id for d in index.search("mug", status="published")] == ["2"]

    def test_upsert_replaces(self):
        index = SearchIndex()
        index.upsert(_doc("1", "Old"))
        index.upsert(_doc("1", "New"))
        assert len(index) == 1
        assert index.get("1").title == "New"

    def test_remove_missing_is_noop(self):
        index = SearchIndex()
        index.remove("404")
        assert len(index) == 0


class TestRegistration:
    def test_registers_sync_handlers(self):
        registry = HandlerRegistry()
        search.register(registry, SearchIndex())
        for name in ("product.created", "product.updated", "product.deleted"):
            assert registry.handlers_for(name, DeliveryMode.SYNC)
            assert registry.handlers_for(name, DeliveryMode.DEFERRED) == ()

    @pytest.mark.asyncio
    async def test_events_maintain_index(self):
        index = SearchIndex()
        indexer = search.SearchIndexer(index)
        payload = {"product_id": "5", "seller_id": "1", "title": "Poster", "status": "draft"}

        await indexer.on_product_saved(DomainEvent(name="product.created", payload=payload))
        assert index.get("5").title == "Poster"

        # Re-applying the same event leaves one document.
        await indexer.on_product_saved(DomainEvent(name="product.created", payload=payload))
        assert len(index) == 1

        await indexer.on_product_deleted(
            DomainEvent(name="product.deleted", payload={"product_id": "5"})
        )
        assert index.get("5") is None
