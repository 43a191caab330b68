"""Repository contract shared by every aggregate type.

A repository loads and persists exactly one aggregate root per row.  It
never returns or accepts a hydrated related aggregate: relations cross the
boundary as DomainIds, which keeps every query single-table and bounded.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from pod_marketplace.core.ids import DomainId

T = TypeVar("T")

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class PageRequest:
    """Which page to load.  ``with_total=False`` skips the count query."""

    page: int = 1
    per_page: int = 24
    with_total: bool = True

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError(f"page must be >= 1, got {self.page}")
        if not 1 <= self.per_page <= MAX_PAGE_SIZE:
            raise ValueError(
                f"per_page must be between 1 and {MAX_PAGE_SIZE}, "
                f"got {self.per_page}"
            )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of aggregates plus pagination metadata.

    ``total`` and ``last_page`` are ``None`` when the total was not requested.
    """

    items: tuple[T, ...]
    current_page: int
    per_page: int
    total: int | None = None
    last_page: int | None = None

    @classmethod
    def build(
        cls,
        items: list[T],
        request: PageRequest,
        total: int | None,
    ) -> Page[T]:
        last_page = None
        if total is not None:
            last_page = max(1, math.ceil(total / request.per_page))
        return cls(
            items=tuple(items),
            current_page=request.page,
            per_page=request.per_page,
            total=total,
            last_page=last_page,
        )


@runtime_checkable
class AggregateRepository(Protocol[T]):
    """Load/persist one aggregate type identified by DomainId."""

    async def find_by_id(self, domain_id: DomainId) -> T | None:
        """At most one single-table query."""
        ...

    async def find_by_ids(self, domain_ids: set[DomainId]) -> dict[DomainId, T]:
        """One query for any non-empty set; missing ids are simply absent."""
        ...

    async def find_page(self, request: PageRequest) -> Page[T]:
        """One page query, plus one count query when ``with_total``."""
        ...

    async def create(self, fields: Mapping[str, Any]) -> T:
        """Insert a row and return the hydrated aggregate with its new id."""
        ...

    async def update(
        self, domain_id: DomainId, fields: Mapping[str, Any],
    ) -> T | None:
        """Return the replaced aggregate, or ``None`` if no row matched."""
        ...

    async def delete(self, domain_id: DomainId) -> bool:
        """``True`` if a row was removed."""
        ...
