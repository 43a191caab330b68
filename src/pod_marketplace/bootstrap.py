"""Application wiring.

Builds every long-lived object once, in dependency order:

1. engine and session factory;
2. repositories;
3. handler registry, with each bounded context registering its handlers;
4. event bus and deferred worker over the configured task queue;
5. hydrator and use cases.

The registry is frozen before the container is returned, so no handler
can be added after wiring completes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .application.use_cases import (
    CreateProduct,
    DeleteProduct,
    ListProducts,
    RegisterUser,
    UpdateProduct,
)
from .bus.bus import DomainEventBus, create_event_bus
from .bus.registry import HandlerRegistry
from .bus.retry import RetryPolicy
from .bus.worker import DeferredWorker
from .contexts import notifications, search
from .contexts.notifications.repository import NotificationRepository
from .contexts.search.index import SearchIndex
from .core.clock import IClock, WallClock
from .core.config import Settings
from .hydration.batch import BatchHydrator
from .storage.connection import create_engine, create_session_factory
from .storage.repos import DesignRepository, ProductRepository, UserRepository

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    clock: IClock
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]

    users: UserRepository
    designs: DesignRepository
    products: ProductRepository
    notifications: NotificationRepository

    registry: HandlerRegistry
    bus: DomainEventBus
    worker: DeferredWorker
    search_index: SearchIndex
    hydrator: BatchHydrator

    create_product: CreateProduct
    update_product: UpdateProduct
    delete_product: DeleteProduct
    list_products: ListProducts
    register_user: RegisterUser

    async def start(self) -> None:
        await self.bus.start()

    async def stop(self) -> None:
        self.worker.stop()
        await self.bus.stop()
        await self.engine.dispose()


def build_container(
    settings: Settings,
    clock: IClock | None = None,
    engine: AsyncEngine | None = None,
) -> Container:
    """Wire the application from *settings*.

    *engine* may be supplied to share one database between containers
    (tests do this with an in-memory SQLite engine).
    """
    clock = clock or WallClock()
    db = settings.database
    engine = engine or create_engine(
        db.url,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        echo=db.echo,
        use_null_pool=db.use_null_pool,
    )
    session_factory = create_session_factory(engine)

    users = UserRepository(session_factory)
    designs = DesignRepository(session_factory)
    products = ProductRepository(session_factory)
    notification_repo = NotificationRepository(session_factory)

    registry = HandlerRegistry()
    search_index = SearchIndex()
    search.register(registry, search_index)
    notifications.register(registry, notification_repo)
    registry.freeze()

    bus_config = settings.event_bus
    bus = create_event_bus(bus_config, registry, clock=clock)
    worker = DeferredWorker(
        registry,
        bus.queue,
        RetryPolicy.from_config(bus_config.retry),
        batch_size=bus_config.batch_size,
    )
    hydrator = BatchHydrator()

    logger.info(
        "Container built (bus=%s, handlers for %d event names)",
        bus_config.backend.value, len(registry.event_names()),
    )
    return Container(
        settings=settings,
        clock=clock,
        engine=engine,
        session_factory=session_factory,
        users=users,
        designs=designs,
        products=products,
        notifications=notification_repo,
        registry=registry,
        bus=bus,
        worker=worker,
        search_index=search_index,
        hydrator=hydrator,
        create_product=CreateProduct(products, bus),
        update_product=UpdateProduct(products, bus),
        delete_product=DeleteProduct(products, bus),
        list_products=ListProducts(products, users, designs, hydrator),
        register_user=RegisterUser(users, bus),
    )
