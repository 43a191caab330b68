"""Test domain event records and their factories."""

from datetime import datetime, timezone

import pytest

from pod_marketplace.core.enums import ProductStatus
from pod_marketplace.domain.events import (
    PRODUCT_CREATED,
    PRODUCT_DELETED,
    PRODUCT_UPDATED,
    USER_REGISTERED,
    DomainEvent,
    product_created,
    product_deleted,
    product_updated,
    user_registered,
)
from pod_marketplace.domain.models import Product, User

_NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def product() -> Product:
    return Product(
        id="10",
        seller_id="2",
        design_id=None,
        title="Hoodie",
        price_cents=4200,
        status=ProductStatus.PUBLISHED,
        created_at=_NOW,
        updated_at=_NOW,
    )


class TestDomainEvent:
    def test_defaults(self):
        event = DomainEvent(name="x")
        assert len(event.event_id) == 36
        assert event.occurred_at.tzinfo is not None
        assert dict(event.payload) == {}

    def test_event_is_frozen(self):
        event = DomainEvent(name="x")
        with pytest.raises(AttributeError):
            event.name = "y"

    def test_nested_payload_frozen(self):
        event = DomainEvent(name="x", payload={"tags": ["a"], "meta": {"k": 1}})
        assert event.payload["tags"] == ("a",)
        with pytest.raises(TypeError):
            event.payload["meta"]["k"] = 2

    def test_payload_dict_is_mutable_copy(self):
        event = DomainEvent(name="x", payload={"tags": ["a"]})
        thawed = event.payload_dict()
        thawed["tags"].append("b")
        assert event.payload["tags"] == ("a",)

    def test_source_mapping_not_shared(self):
        source = {"k": 1}
        event = DomainEvent(name="x", payload=source)
        source["k"] = 2
        assert event.payload["k"] == 1

    def test_hashable_by_event_id(self):
        event = DomainEvent(name="x", payload={"k": {"nested": [1]}})
        twin = DomainEvent(
            name="x", payload={"k": {"nested": [1]}},
            event_id=event.event_id, occurred_at=event.occurred_at,
        )
        assert hash(event) == hash(event.event_id)
        assert {event, twin} == {event}


class TestFactories:
    def test_product_created(self, product):
        event = product_created(product)
        assert event.name == PRODUCT_CREATED
        assert event.payload_dict() == {
            "product_id": "10",
            "seller_id": "2",
            "design_id": None,
            "title": "Hoodie",
            "price_cents": 4200,
            "status": "published",
        }

    def test_product_updated_sorts_changed_fields(self, product):
        event = product_updated(product, {"title", "price_cents"})
        assert event.name == PRODUCT_UPDATED
        assert event.payload["changed_fields"] == ("price_cents", "title")

    def test_product_deleted(self):
        event = product_deleted("10")
        assert event.name == PRODUCT_DELETED
        assert dict(event.payload) == {"product_id": "10"}

    def test_user_registered(self):
        user = User(id="3", name="Cy", email="cy@example.com", is_seller=True, created_at=_NOW)
        event = user_registered(user)
        assert event.name == USER_REGISTERED
        assert event.payload["is_seller"] is True

    def test_each_event_has_own_id(self, product):
        assert product_created(product).event_id != product_created(product).event_id
