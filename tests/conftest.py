"""Shared fixtures for the pod-marketplace test suite."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import event

from pod_marketplace.bus.bus import DomainEventBus
from pod_marketplace.bus.queue import InMemoryTaskQueue
from pod_marketplace.bus.registry import HandlerRegistry
from pod_marketplace.contexts.notifications.repository import NotificationRepository
from pod_marketplace.core.clock import SimClock
from pod_marketplace.storage.connection import (
    create_all,
    create_engine,
    create_session_factory,
)
from pod_marketplace.storage.repos import (
    DesignRepository,
    ProductRepository,
    UserRepository,
)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

@pytest.fixture
def sim_clock() -> SimClock:
    """Return a SimClock starting at 2024-01-01 00:00 UTC."""
    return SimClock(start=datetime(2024, 1, 1, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

class QueryCounter:
    """Counts statements sent to the database through one engine."""

    def __init__(self) -> None:
        self.statements: list[str] = []

    def __call__(self, conn, cursor, statement, parameters, context, executemany):
        self.statements.append(statement)

    @property
    def selects(self) -> list[str]:
        return [s for s in self.statements if s.lstrip().upper().startswith("SELECT")]

    def reset(self) -> None:
        self.statements.clear()


@pytest.fixture
async def engine():
    """In-memory SQLite engine with the schema created."""
    eng = create_engine("sqlite+aiosqlite://")
    await create_all(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def query_counter(engine):
    counter = QueryCounter()
    event.listen(engine.sync_engine, "before_cursor_execute", counter)
    yield counter
    event.remove(engine.sync_engine, "before_cursor_execute", counter)


@pytest.fixture
def users(session_factory) -> UserRepository:
    return UserRepository(session_factory)


@pytest.fixture
def designs(session_factory) -> DesignRepository:
    return DesignRepository(session_factory)


@pytest.fixture
def products(session_factory) -> ProductRepository:
    return ProductRepository(session_factory)


@pytest.fixture
def notification_repo(session_factory) -> NotificationRepository:
    return NotificationRepository(session_factory)


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

@pytest.fixture
async def seller(users):
    return await users.create(
        {"name": "Ada Seller", "email": "ada@example.com", "is_seller": True}
    )


@pytest.fixture
async def design(designs, seller):
    return await designs.create(
        {"owner_id": seller.id, "title": "Sunset", "image_path": "designs/sunset.png"}
    )


@pytest.fixture
async def catalog(users, designs, products):
    """Three sellers, two designs and 24 products spread across them."""
    sellers = [
        await users.create(
            {"name": f"Seller {i}", "email": f"seller{i}@example.com", "is_seller": True}
        )
        for i in range(3)
    ]
    artwork = [
        await designs.create(
            {"owner_id": sellers[i].id, "title": f"Design {i}", "image_path": f"d/{i}.png"}
        )
        for i in range(2)
    ]
    items = []
    for i in range(24):
        items.append(
            await products.create({
                "seller_id": sellers[i % 3].id,
                "design_id": artwork[i % 2].id,
                "title": f"Shirt {i}",
                "price_cents": 1500 + i,
            })
        )
    return {"sellers": sellers, "designs": artwork, "products": items}


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------

@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def task_queue(sim_clock) -> InMemoryTaskQueue:
    return InMemoryTaskQueue(clock=sim_clock)


@pytest.fixture
def event_bus(registry, task_queue) -> DomainEventBus:
    return DomainEventBus(registry, task_queue)
