"""Repository pattern for async database operations.

Each repository encapsulates query logic for a single aggregate root and
implements :class:`pod_marketplace.domain.repositories.AggregateRepository`.
Every public method opens its own session; writes run in one transaction
that has committed by the time the method returns.

The identifier codec is applied here and nowhere else in the storage
layer: DomainIds become integer keys on the way in (primary key and every
foreign-key field) and integer keys become DomainIds on the way out.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, ClassVar, Generic, Sequence, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pod_marketplace.core.enums import ProductStatus
from pod_marketplace.core.errors import (
    ConstraintViolation,
    StorageUnavailable,
    UnknownField,
)
from pod_marketplace.core.ids import (
    DomainId,
    to_domain,
    to_domain_optional,
    to_storage,
    to_storage_optional,
)
from pod_marketplace.domain.models import Design, Product, User
from pod_marketplace.domain.repositories import Page, PageRequest

from .connection import session_scope
from .models import Base, DesignRecord, ProductRecord, UserRecord

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Base)
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

_CONSTRAINT_FIELD_PATTERNS = (
    # SQLite: "UNIQUE constraint failed: users.email"
    re.compile(r"constraint failed: \w+\.(\w+)"),
    # PostgreSQL: "Key (email)=(a@b.c) already exists."
    re.compile(r"Key \((\w+)"),
    # PostgreSQL NOT NULL: 'null value in column "title"'
    re.compile(r'column "(\w+)"'),
)


def _violated_field(exc: IntegrityError) -> str | None:
    """Best-effort extraction of the violated column from a driver message."""
    message = str(exc.orig) if exc.orig is not None else str(exc)
    for pattern in _CONSTRAINT_FIELD_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


@contextmanager
def translate_storage_errors(aggregate: str) -> Iterator[None]:
    """Map driver exceptions onto the marketplace error taxonomy.

    Nothing is retried here; retry policy belongs to the caller's caller.
    """
    try:
        yield
    except IntegrityError as exc:
        field = _violated_field(exc)
        logger.info("Constraint violation on %s (field=%s)", aggregate, field)
        raise ConstraintViolation(
            f"{aggregate} write rejected: {exc.orig}", field=field,
        ) from exc
    except (OperationalError, InterfaceError, PoolTimeoutError, OSError) as exc:
        logger.error("Storage unavailable during %s operation: %s", aggregate, exc)
        raise StorageUnavailable(str(exc)) from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.error("Connection invalidated during %s operation", aggregate)
            raise StorageUnavailable(str(exc)) from exc
        raise


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Generic base
# ---------------------------------------------------------------------------

class SqlAlchemyRepository(Generic[R, T]):
    """Single-table repository over one ORM record class.

    Subclasses declare:

    * ``record_class`` — the ORM model.
    * ``aggregate_name`` — used in errors and logs.
    * ``writable_fields`` — domain field names accepted by create/update.
    * ``reference_fields`` — the subset holding DomainIds of other
      aggregates; converted with the codec on write.
    * ``_to_aggregate`` — record → aggregate.
    """

    record_class: ClassVar[type[Base]]
    aggregate_name: ClassVar[str]
    writable_fields: ClassVar[frozenset[str]]
    reference_fields: ClassVar[frozenset[str]] = frozenset()

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -- Conversion ----------------------------------------------------------

    def _to_aggregate(self, record: R) -> T:
        raise NotImplementedError

    def _convert_value(self, name: str, value: Any) -> Any:
        """Hook for per-field conversion (enums, normalisation)."""
        return value

    def _to_columns(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - self.writable_fields
        if unknown:
            raise UnknownField(self.aggregate_name, unknown)

        columns: dict[str, Any] = {}
        for name, value in fields.items():
            if name in self.reference_fields:
                columns[name] = to_storage_optional(value)
            else:
                columns[name] = self._convert_value(name, value)
        return columns

    # -- Reads ---------------------------------------------------------------

    async def find_by_id(self, domain_id: DomainId) -> T | None:
        """Load one aggregate root by id.  One single-table query."""
        key = to_storage(domain_id)
        model = self.record_class
        with translate_storage_errors(self.aggregate_name):
            async with session_scope(self._session_factory) as session:
                result = await session.execute(select(model).where(model.id == key))
                record = result.scalar_one_or_none()
                if record is None:
                    return None
                return self._to_aggregate(record)

    async def find_by_ids(self, domain_ids: set[DomainId]) -> dict[DomainId, T]:
        """Load many aggregate roots with one ``IN`` query.

        Ids with no row are absent from the result.  An empty set returns
        ``{}`` without touching the store.
        """
        keys = {to_storage(domain_id) for domain_id in domain_ids}
        if not keys:
            return {}

        model = self.record_class
        with translate_storage_errors(self.aggregate_name):
            async with session_scope(self._session_factory) as session:
                result = await session.execute(select(model).where(model.id.in_(keys)))
                records: Sequence[R] = result.scalars().all()
                found = {to_domain(r.id): self._to_aggregate(r) for r in records}

        logger.debug(
            "Loaded %d/%d %s rows by id", len(found), len(keys), self.aggregate_name,
        )
        return found

    async def find_page(self, request: PageRequest) -> Page[T]:
        """Load one page ordered by id, plus the total when requested."""
        model = self.record_class
        stmt = (
            select(model)
            .order_by(model.id.asc())
            .offset(request.offset)
            .limit(request.per_page)
        )
        with translate_storage_errors(self.aggregate_name):
            async with session_scope(self._session_factory) as session:
                result = await session.execute(stmt)
                items = [self._to_aggregate(r) for r in result.scalars().all()]

                total: int | None = None
                if request.with_total:
                    count = await session.execute(
                        select(func.count()).select_from(model)
                    )
                    total = int(count.scalar_one())

        return Page.build(items, request, total)

    # -- Writes --------------------------------------------------------------

    async def create(self, fields: Mapping[str, Any]) -> T:
        """Insert a row and return the aggregate with its assigned id."""
        columns = self._to_columns(fields)
        with translate_storage_errors(self.aggregate_name):
            async with session_scope(self._session_factory) as session:
                record = self.record_class(**columns)
                session.add(record)
                await session.flush()
                aggregate = self._to_aggregate(record)

        logger.debug("Inserted %s %s", self.aggregate_name, aggregate.id)
        return aggregate

    async def update(
        self, domain_id: DomainId, fields: Mapping[str, Any],
    ) -> T | None:
        """Replace the given columns.  ``None`` if no row has this id."""
        key = to_storage(domain_id)
        columns = self._to_columns(fields)
        with translate_storage_errors(self.aggregate_name):
            async with session_scope(self._session_factory) as session:
                record = await session.get(self.record_class, key)
                if record is None:
                    return None
                for name, value in columns.items():
                    setattr(record, name, value)
                await session.flush()
                aggregate = self._to_aggregate(record)

        logger.debug(
            "Updated %s %s fields=%s", self.aggregate_name, domain_id, sorted(columns),
        )
        return aggregate

    async def delete(self, domain_id: DomainId) -> bool:
        """Delete a row.  ``False`` if none matched."""
        key = to_storage(domain_id)
        model = self.record_class
        with translate_storage_errors(self.aggregate_name):
            async with session_scope(self._session_factory) as session:
                result = await session.execute(delete(model).where(model.id == key))
                removed = result.rowcount > 0

        logger.debug("Delete %s %s -> %s", self.aggregate_name, domain_id, removed)
        return removed


# ---------------------------------------------------------------------------
# UserRepository
# ---------------------------------------------------------------------------

class UserRepository(SqlAlchemyRepository[UserRecord, User]):
    """Repository for :class:`User` aggregates."""

    record_class = UserRecord
    aggregate_name = "user"
    writable_fields = frozenset({"name", "email", "is_seller"})

    def _convert_value(self, name: str, value: Any) -> Any:
        if name == "email" and isinstance(value, str):
            return value.strip().lower()
        return value

    def _to_aggregate(self, record: UserRecord) -> User:
        return User(
            id=to_domain(record.id),
            name=record.name,
            email=record.email,
            is_seller=record.is_seller,
            created_at=as_utc(record.created_at),
        )


# ---------------------------------------------------------------------------
# DesignRepository
# ---------------------------------------------------------------------------

class DesignRepository(SqlAlchemyRepository[DesignRecord, Design]):
    """Repository for :class:`Design` aggregates."""

    record_class = DesignRecord
    aggregate_name = "design"
    writable_fields = frozenset({"owner_id", "title", "image_path"})
    reference_fields = frozenset({"owner_id"})

    def _to_aggregate(self, record: DesignRecord) -> Design:
        return Design(
            id=to_domain(record.id),
            owner_id=to_domain(record.owner_id),
            title=record.title,
            image_path=record.image_path,
            created_at=as_utc(record.created_at),
        )


# ---------------------------------------------------------------------------
# ProductRepository
# ---------------------------------------------------------------------------

class ProductRepository(SqlAlchemyRepository[ProductRecord, Product]):
    """Repository for :class:`Product` aggregates.

    Products reference a seller (:class:`User`) and optionally a
    :class:`Design`; both come back as DomainIds only.
    """

    record_class = ProductRecord
    aggregate_name = "product"
    writable_fields = frozenset(
        {"seller_id", "design_id", "title", "price_cents", "status"}
    )
    reference_fields = frozenset({"seller_id", "design_id"})

    def _convert_value(self, name: str, value: Any) -> Any:
        if name == "status" and value is not None:
            return ProductStatus(value).value
        return value

    def _to_aggregate(self, record: ProductRecord) -> Product:
        return Product(
            id=to_domain(record.id),
            seller_id=to_domain(record.seller_id),
            design_id=to_domain_optional(record.design_id),
            title=record.title,
            price_cents=record.price_cents,
            status=ProductStatus(record.status),
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at),
        )
