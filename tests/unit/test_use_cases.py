"""Tests for the catalog use cases.

Every write use case publishes only after its repository call returned,
and publishes nothing when the repository raised or matched no row.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from pod_marketplace.application.use_cases import (
    CreateProduct,
    DeleteProduct,
    ListProducts,
    RegisterUser,
    UpdateProduct,
)
from pod_marketplace.core.enums import ProductStatus
from pod_marketplace.core.errors import (
    ConstraintViolation,
    InvalidIdentifier,
    StorageUnavailable,
)
from pod_marketplace.domain.events import PRODUCT_CREATED, PRODUCT_DELETED, PRODUCT_UPDATED
from pod_marketplace.domain.repositories import PageRequest


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class Recorder:
    """Subscribes to every catalog event and keeps what it saw."""

    def __init__(self, bus, names=(PRODUCT_CREATED, PRODUCT_UPDATED, PRODUCT_DELETED)):
        self.events = []
        for name in names:
            bus.subscribe(name, self._record, handler_id=f"recorder.{name}")

    async def _record(self, event) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [e.name for e in self.events]


class UnavailableRepository:
    async def create(self, fields):
        raise StorageUnavailable("database is down")


# ===========================================================================
# CreateProduct
# ===========================================================================


class TestCreateProduct:
    @pytest.mark.asyncio
    async def test_creates_and_publishes(self, products, event_bus, seller, design):
        recorder = Recorder(event_bus)
        product = await CreateProduct(products, event_bus).execute({
            "seller_id": seller.id,
            "design_id": design.id,
            "title": "  Tote bag ",
            "price_cents": 1800,
        })

        assert product.title == "Tote bag"
        assert recorder.names == [PRODUCT_CREATED]
        payload = recorder.events[0].payload
        assert payload["product_id"] == product.id
        assert payload["seller_id"] == seller.id
        assert payload["design_id"] == design.id
        assert payload["status"] == "draft"

    @pytest.mark.asyncio
    async def test_handler_sees_committed_row(self, products, event_bus, seller):
        seen = []

        async def check(event):
            seen.append(await products.find_by_id(event.payload["product_id"]))

        event_bus.subscribe(PRODUCT_CREATED, check)
        product = await CreateProduct(products, event_bus).execute(
            {"seller_id": seller.id, "title": "Cap", "price_cents": 900}
        )
        assert seen == [product]

    @pytest.mark.asyncio
    async def test_storage_failure_publishes_nothing(self, event_bus):
        recorder = Recorder(event_bus)
        with pytest.raises(StorageUnavailable):
            await CreateProduct(UnavailableRepository(), event_bus).execute(
                {"seller_id": "1", "title": "Cap", "price_cents": 900}
            )
        assert recorder.events == []
        assert event_bus.published_count == 0

    @pytest.mark.asyncio
    async def test_constraint_violation_publishes_nothing(self, products, event_bus):
        recorder = Recorder(event_bus)
        with pytest.raises(ConstraintViolation):
            await CreateProduct(products, event_bus).execute(
                {"seller_id": "404", "title": "Cap", "price_cents": 900}
            )
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_invalid_input_rejected_before_store(self, products, event_bus, query_counter):
        query_counter.reset()
        with pytest.raises(ValidationError):
            await CreateProduct(products, event_bus).execute(
                {"seller_id": "1", "title": "", "price_cents": -5}
            )
        assert query_counter.statements == []

    @pytest.mark.asyncio
    async def test_malformed_seller_id(self, products, event_bus):
        with pytest.raises(InvalidIdentifier):
            await CreateProduct(products, event_bus).execute(
                {"seller_id": "abc", "title": "Cap", "price_cents": 900}
            )


# ===========================================================================
# UpdateProduct / DeleteProduct
# ===========================================================================


class TestUpdateProduct:
    @pytest.mark.asyncio
    async def test_publishes_changed_fields(self, products, event_bus, seller):
        product = await products.create(
            {"seller_id": seller.id, "title": "Cap", "price_cents": 900}
        )
        recorder = Recorder(event_bus)

        updated = await UpdateProduct(products, event_bus).execute(
            product.id, {"price_cents": 1200, "status": "published"},
        )

        assert updated.price_cents == 1200
        assert updated.status is ProductStatus.PUBLISHED
        assert recorder.names == [PRODUCT_UPDATED]
        assert recorder.events[0].payload["changed_fields"] == ("price_cents", "status")

    @pytest.mark.asyncio
    async def test_missing_product_publishes_nothing(self, products, event_bus):
        recorder = Recorder(event_bus)
        result = await UpdateProduct(products, event_bus).execute("9999", {"title": "X"})
        assert result is None
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, products, event_bus):
        with pytest.raises(ValidationError):
            await UpdateProduct(products, event_bus).execute("1", {})

    @pytest.mark.asyncio
    async def test_null_title_rejected(self, products, event_bus):
        with pytest.raises(ValidationError):
            await UpdateProduct(products, event_bus).execute("1", {"title": None})


class TestDeleteProduct:
    @pytest.mark.asyncio
    async def test_delete_publishes(self, products, event_bus, seller):
        product = await products.create(
            {"seller_id": seller.id, "title": "Cap", "price_cents": 900}
        )
        recorder = Recorder(event_bus)

        assert await DeleteProduct(products, event_bus).execute(product.id) is True
        assert recorder.names == [PRODUCT_DELETED]
        assert recorder.events[0].payload["product_id"] == product.id

    @pytest.mark.asyncio
    async def test_missing_publishes_nothing(self, products, event_bus):
        recorder = Recorder(event_bus)
        assert await DeleteProduct(products, event_bus).execute("9999") is False
        assert recorder.events == []


# ===========================================================================
# RegisterUser
# ===========================================================================


class TestRegisterUser:
    @pytest.mark.asyncio
    async def test_registers_and_publishes(self, users, event_bus):
        seen = []

        async def on_registered(event):
            seen.append(event.payload_dict())

        event_bus.subscribe("user.registered", on_registered)
        user = await RegisterUser(users, event_bus).execute(
            {"name": "Dee", "email": "dee@example.com", "is_seller": True}
        )
        assert seen == [{
            "user_id": user.id, "name": "Dee",
            "email": "dee@example.com", "is_seller": True,
        }]

    @pytest.mark.asyncio
    async def test_duplicate_email(self, users, event_bus, seller):
        with pytest.raises(ConstraintViolation) as exc_info:
            await RegisterUser(users, event_bus).execute(
                {"name": "Again", "email": seller.email}
            )
        assert exc_info.value.field == "email"
        assert event_bus.published_count == 0

    @pytest.mark.asyncio
    async def test_bad_email(self, users, event_bus):
        with pytest.raises(ValidationError):
            await RegisterUser(users, event_bus).execute({"name": "X", "email": "nope"})


# ===========================================================================
# ListProducts
# ===========================================================================


class TestListProducts:
    @pytest.mark.asyncio
    async def test_page_with_relations_in_bounded_queries(
        self, catalog, products, users, designs, query_counter,
    ):
        query_counter.reset()

        listing = await ListProducts(products, users, designs).execute(
            PageRequest(page=1, per_page=24)
        )

        assert len(query_counter.selects) == 4
        body = listing.to_dict()
        assert len(body["data"]) == 24
        assert body["meta"] == {
            "current_page": 1, "last_page": 1, "per_page": 24, "total": 24,
        }
        first = body["data"][0]
        assert first["seller"] == {"id": catalog["sellers"][0].id, "name": "Seller 0"}
        assert first["design"]["title"] == "Design 0"

    @pytest.mark.asyncio
    async def test_unresolved_relation_rendered_explicitly(
        self, catalog, products, users, designs,
    ):
        # Hide one seller from the users repository.
        hidden = catalog["sellers"][1].id

        class FilteringUsers:
            async def find_by_ids(self, ids):
                found = await users.find_by_ids(ids)
                found.pop(hidden, None)
                return found

        listing = await ListProducts(products, FilteringUsers(), designs).execute(
            PageRequest(per_page=24)
        )
        rows = [
            row for row in listing.to_dict()["data"] if row["seller"].get("unresolved")
        ]
        assert len(rows) == 8
        assert all(row["seller"] == {"id": hidden, "unresolved": True} for row in rows)

    @pytest.mark.asyncio
    async def test_context_shared_across_calls(self, catalog, products, users, designs, query_counter):
        use_case = ListProducts(products, users, designs)
        first = await use_case.execute(PageRequest(page=1, per_page=12))
        query_counter.reset()

        await use_case.execute(PageRequest(page=2, per_page=12), first.context)

        # Same sellers and designs on both pages: only page + count.
        assert len(query_counter.selects) == 2

    @pytest.mark.asyncio
    async def test_product_without_design(self, products, users, designs, seller):
        await products.create({"seller_id": seller.id, "title": "Plain", "price_cents": 500})
        listing = await ListProducts(products, users, designs).execute(PageRequest())
        assert listing.to_dict()["data"][0]["design"] is None
